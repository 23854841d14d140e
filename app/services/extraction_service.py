"""Bounded field extraction from the chat and billing webhook payloads."""

import hashlib
import json
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from app.errors import MalformedPayloadError
from app.schemas.billing import BillingWebhook
from app.schemas.events import BillingEventMeta, ChatEventMeta
from app.schemas.whatsapp import WhatsAppMessage, WhatsAppValue, WhatsAppWebhook
from app.services.text_crypto import encrypt_text

MAX_TEXT_CHARS = 4096
TEXT_LIKE_TYPES = frozenset({"text", "button", "interactive"})


@dataclass
class ChatExtraction:
    kind: str  # message, status
    message_id: Optional[str]
    sender: Optional[str]
    msg_type: Optional[str]
    text: Optional[str] = None
    timestamp: Optional[str] = None
    status: Optional[str] = None
    business_number: Optional[str] = None

    @property
    def is_actionable(self) -> bool:
        return (
            self.kind == "message"
            and self.msg_type in TEXT_LIKE_TYPES
            and bool(self.message_id)
            and bool(self.sender)
            and bool((self.text or "").strip())
        )

    def to_meta(self, key: Optional[bytes] = None) -> ChatEventMeta:
        """Queue metadata; with a key the text is sealed and never stored in the clear."""
        text = self.text or ""
        return ChatEventMeta(
            msg_type=self.msg_type or "text",
            text=None if key else text,
            text_enc=encrypt_text(text, key) if key else None,
            text_len=len(text),
            text_sha256=sha256_hex(text.encode("utf-8")),
            message_timestamp=self.timestamp,
            business_number=self.business_number,
        )


@dataclass
class BillingExtraction:
    provider_event_id: str
    payload_hash: str
    meta: BillingEventMeta


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def normalize_phone_e164(raw: Optional[Any]) -> Optional[str]:
    digits = re.sub(r"\D", "", str(raw or ""))
    if not digits:
        return None
    return f"+{digits}"


def parse_timestamp(value: Optional[Any]) -> Optional[str]:
    """Epoch seconds, epoch millis or ISO string -> ISO string (UTC)."""
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    try:
        number = float(raw)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.isoformat()
    seconds = number / 1000 if number >= 1e12 else number
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


def extract_message_text(message: WhatsAppMessage) -> str:
    msg_type = (message.type or "").lower()
    text = ""
    if msg_type == "text" and message.text:
        text = message.text.body or ""
    elif msg_type == "button" and message.button:
        text = message.button.text or ""
    elif msg_type == "interactive" and message.interactive:
        reply = message.interactive.button_reply or message.interactive.list_reply
        text = (reply.title if reply else None) or ""
    return text[:MAX_TEXT_CHARS]


def _first_value(body: Any) -> Optional[WhatsAppValue]:
    if not isinstance(body, dict):
        return None
    try:
        envelope = WhatsAppWebhook.model_validate(body)
    except ValidationError:
        return None
    if not envelope.entry or not envelope.entry[0].changes:
        return None
    return envelope.entry[0].changes[0].value


def extract_chat_events(body: Any) -> list[ChatExtraction]:
    """Walk entry[0].changes[0].value and return inbound messages or status receipts."""
    value = _first_value(body)
    if value is None:
        return []

    business_number = None
    if value.metadata:
        business_number = value.metadata.display_phone_number or value.metadata.phone_number_id
    contact_phone = normalize_phone_e164(value.contacts[0].wa_id) if value.contacts else None

    if value.messages:
        extracted = []
        for message in value.messages:
            extracted.append(
                ChatExtraction(
                    kind="message",
                    message_id=message.id,
                    sender=normalize_phone_e164(message.from_phone) or contact_phone,
                    msg_type=(message.type or "").lower() or None,
                    text=extract_message_text(message),
                    timestamp=parse_timestamp(message.timestamp),
                    business_number=business_number,
                )
            )
        return extracted

    return [
        ChatExtraction(
            kind="status",
            message_id=status.id,
            sender=normalize_phone_e164(status.recipient_id),
            msg_type="status",
            timestamp=parse_timestamp(status.timestamp),
            status=(status.status or "").lower() or None,
            business_number=business_number,
        )
        for status in value.statuses
    ]


def _optional_str(value: Optional[Any]) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def extract_billing_event(raw_body: bytes) -> BillingExtraction:
    """Parse a verified billing webhook body. Raises MalformedPayloadError."""
    try:
        parsed = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayloadError(f"billing body is not JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise MalformedPayloadError("billing body is not an object")
    try:
        payload = BillingWebhook.model_validate(parsed)
    except ValidationError as exc:
        raise MalformedPayloadError(f"billing body has unexpected shape: {exc.error_count()} errors") from exc

    event_name = payload.meta.event_name or "unknown"
    data_id = _optional_str(payload.data.id)
    attrs = payload.data.attributes
    custom = payload.meta.custom_data or {}
    wa_number = normalize_phone_e164(custom.get("wa_number") or custom.get("waNumber") or custom.get("phone"))

    if event_name.startswith("subscription_payment_"):
        subscription_id = _optional_str(attrs.subscription_id)
    elif (payload.data.type or "subscriptions") == "subscriptions":
        subscription_id = data_id
    else:
        subscription_id = _optional_str(attrs.subscription_id)

    meta = BillingEventMeta(
        event_name=event_name,
        subscription_id=subscription_id,
        wa_number=wa_number,
        status=attrs.status,
        renews_at=attrs.renews_at,
        ends_at=attrs.ends_at,
        customer_id=_optional_str(attrs.customer_id),
        variant_id=_optional_str(attrs.variant_id),
        test_mode=bool(payload.meta.test_mode),
    )
    payload_hash = sha256_hex(raw_body)
    # Provider retries resend the same body; distinct deliveries for one object differ.
    provider_event_id = f"{event_name}:{data_id}:{payload_hash}" if data_id else str(uuid.uuid4())
    return BillingExtraction(
        provider_event_id=provider_event_id,
        payload_hash=payload_hash,
        meta=meta,
    )
