"""Out-of-band half of the fast-ack webhooks: extract and enqueue.

These run after the HTTP response has been sent, so they open their own
session and never raise. A degraded store is logged, not propagated.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.database import SessionLocal
from app.errors import MalformedPayloadError, StoreUnavailableError
from app.logging_config import get_logger, mask_phone
from app.models import Provider
from app.services.event_store import enqueue_event
from app.services.extraction_service import extract_billing_event, extract_chat_events
from app.services.text_crypto import load_key

logger = get_logger("ingestion")

CHAT_EVENT_TYPE = "inbound_message"

_warned_plaintext_text = False


def _enqueue(session_factory: Optional[Callable[[], Session]], **kwargs) -> bool:
    db = (session_factory or SessionLocal)()
    try:
        return enqueue_event(db, **kwargs)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailableError(str(exc)[:300]) from exc
    finally:
        db.close()


def ingest_chat_payload(
    raw_body: bytes,
    session_factory: Optional[Callable[[], Session]] = None,
    config: Settings = default_settings,
) -> int:
    """Enqueue the actionable messages in a chat webhook body. Returns rows inserted."""
    global _warned_plaintext_text

    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Chat webhook body is not JSON", extra={"context": {"error": str(exc)[:200]}})
        return 0

    key = load_key(config)
    if key is None and not _warned_plaintext_text:
        logger.warning("TEXT_ENC_KEY_B64 not set, queued message text is stored unencrypted until processed")
        _warned_plaintext_text = True

    inserted = 0
    now = datetime.now(timezone.utc)
    next_attempt_at = None
    if config.chat_burst_window_seconds > 0:
        next_attempt_at = now + timedelta(seconds=config.chat_burst_window_seconds)

    for extraction in extract_chat_events(body):
        if not extraction.is_actionable:
            logger.debug(
                "Chat event dropped",
                extra={"context": {"kind": extraction.kind, "msg_type": extraction.msg_type}},
            )
            continue
        meta = extraction.to_meta(key)
        try:
            created = _enqueue(
                session_factory,
                provider=Provider.CHAT,
                provider_event_id=extraction.message_id,
                event_type=CHAT_EVENT_TYPE,
                payload_hash=meta.text_sha256,
                sender=extraction.sender,
                meta=meta.model_dump(exclude_none=True),
                next_attempt_at=next_attempt_at,
            )
        except StoreUnavailableError as exc:
            logger.error("Event store unavailable, chat event not queued", extra={"context": {"error": str(exc)}})
            continue
        inserted += int(created)
        logger.info(
            "Chat event queued" if created else "Duplicate chat event ignored",
            extra={"context": {"message_id": extraction.message_id, "from": mask_phone(extraction.sender)}},
        )
    return inserted


def ingest_billing_payload(
    raw_body: bytes,
    session_factory: Optional[Callable[[], Session]] = None,
) -> bool:
    """Enqueue one verified billing webhook. Returns True when a row was inserted."""
    try:
        extraction = extract_billing_event(raw_body)
    except MalformedPayloadError as exc:
        logger.warning("Billing webhook dropped", extra={"context": {"error": str(exc)[:200]}})
        return False

    meta = extraction.meta
    try:
        created = _enqueue(
            session_factory,
            provider=Provider.BILLING,
            provider_event_id=extraction.provider_event_id,
            event_type=meta.event_name,
            payload_hash=extraction.payload_hash,
            sender=meta.wa_number,
            meta=meta.model_dump(),
        )
    except StoreUnavailableError as exc:
        logger.error("Event store unavailable, billing event not queued", extra={"context": {"error": str(exc)}})
        return False

    logger.info(
        "Billing event queued" if created else "Duplicate billing event ignored",
        extra={"context": {"provider_event_id": extraction.provider_event_id, "event_name": meta.event_name}},
    )
    return created
