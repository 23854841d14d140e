from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict


class BillingMeta(BaseModel):
    event_name: Optional[str] = None
    test_mode: Optional[bool] = None
    custom_data: Optional[dict[str, Any]] = None


class BillingAttributes(BaseModel):
    status: Optional[str] = None
    renews_at: Optional[str] = None
    ends_at: Optional[str] = None
    customer_id: Optional[Union[int, str]] = None
    variant_id: Optional[Union[int, str]] = None
    subscription_id: Optional[Union[int, str]] = None

    model_config = ConfigDict(extra="allow")


class BillingData(BaseModel):
    id: Optional[Union[int, str]] = None
    type: Optional[str] = None
    attributes: BillingAttributes = BillingAttributes()


class BillingWebhook(BaseModel):
    meta: BillingMeta = BillingMeta()
    data: BillingData = BillingData()
