from typing import Any, Optional

from pydantic import BaseModel


class ChatEventMeta(BaseModel):
    """Queue metadata for one inbound chat message."""

    msg_type: str
    # exactly one of text / text_enc is set while queued; both are dropped once processed
    text: Optional[str] = None
    text_enc: Optional[dict[str, Any]] = None
    text_len: int
    text_sha256: str
    message_timestamp: Optional[str] = None
    business_number: Optional[str] = None


class BillingEventMeta(BaseModel):
    event_name: str
    subscription_id: Optional[str] = None
    wa_number: Optional[str] = None
    status: Optional[str] = None
    renews_at: Optional[str] = None
    ends_at: Optional[str] = None
    customer_id: Optional[str] = None
    variant_id: Optional[str] = None
    test_mode: bool = False
