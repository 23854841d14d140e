from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import Text, func, text
from sqlalchemy.dialects.postgresql import JSONB, array, insert
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.models import EventStatus, InboundEvent, Provider
from app.services.retry import backoff_delay

LAST_ERROR_MAX_CHARS = 500
TEXT_META_KEYS = ("text", "text_enc")


@dataclass
class ClaimedEvent:
    id: uuid.UUID
    provider: str
    provider_event_id: str
    event_type: Optional[str]
    sender: Optional[str]
    meta: dict[str, Any] = field(default_factory=dict)
    attempts: int = 1
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "ClaimedEvent":
        return cls(
            id=row["id"],
            provider=row["provider"],
            provider_event_id=row["provider_event_id"],
            event_type=row.get("event_type"),
            sender=row.get("sender"),
            meta=dict(row.get("meta") or {}),
            attempts=int(row.get("attempts") or 0),
            created_at=row.get("created_at"),
        )


def enqueue_event(
    db: Session,
    *,
    provider: Provider,
    provider_event_id: str,
    event_type: Optional[str],
    payload_hash: Optional[str],
    sender: Optional[str],
    meta: dict[str, Any],
    next_attempt_at: Optional[datetime] = None,
) -> bool:
    """Insert one pending event. Returns False when the provider event id was already queued."""
    now = datetime.now(timezone.utc)
    stmt = (
        insert(InboundEvent)
        .values(
            id=uuid.uuid4(),
            provider=provider.value,
            provider_event_id=provider_event_id,
            event_type=event_type,
            payload_hash=payload_hash,
            sender=sender,
            meta=meta,
            status=EventStatus.PENDING.value,
            attempts=0,
            next_attempt_at=next_attempt_at,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["provider", "provider_event_id"])
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount > 0


def claim_next_event(
    db: Session,
    now: Optional[datetime] = None,
    *,
    lock_timeout_seconds: Optional[int] = None,
) -> Optional[ClaimedEvent]:
    """Atomically move the oldest eligible row to processing and return it.

    SKIP LOCKED keeps concurrent claimers from ever receiving the same row.
    Rows stuck in processing longer than the lock timeout are eligible again.
    """
    now = now or datetime.now(timezone.utc)
    if lock_timeout_seconds is None:
        lock_timeout_seconds = default_settings.queue_lock_timeout_seconds
    stale_before = now - timedelta(seconds=lock_timeout_seconds)
    row = (
        db.execute(
            text(
                """
                WITH cte AS (
                    SELECT id
                    FROM inbound_events
                    WHERE (
                        status IN ('pending', 'error')
                        AND (next_attempt_at IS NULL OR next_attempt_at <= :now)
                    ) OR (
                        status = 'processing' AND locked_at < :stale_before
                    )
                    ORDER BY created_at
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE inbound_events
                SET status = 'processing',
                    locked_at = :now,
                    attempts = inbound_events.attempts + 1,
                    updated_at = :now
                FROM cte
                WHERE inbound_events.id = cte.id
                RETURNING inbound_events.id,
                          inbound_events.provider,
                          inbound_events.provider_event_id,
                          inbound_events.event_type,
                          inbound_events.sender,
                          inbound_events.meta,
                          inbound_events.attempts,
                          inbound_events.created_at
                """
            ),
            {"now": now, "stale_before": stale_before},
        )
        .mappings()
        .first()
    )
    db.commit()
    if row is None:
        return None
    return ClaimedEvent.from_row(row)


def _meta_without_text():
    return InboundEvent.meta.op("-", return_type=JSONB)(array(list(TEXT_META_KEYS), type_=Text))


def mark_done(db: Session, event_id, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)
    db.query(InboundEvent).filter(InboundEvent.id == event_id).update(
        {
            InboundEvent.status: EventStatus.DONE.value,
            InboundEvent.processed_at: now,
            InboundEvent.meta: _meta_without_text(),
            InboundEvent.locked_at: None,
            InboundEvent.last_error: None,
            InboundEvent.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()


def retry_delay_seconds(attempts: int, config: Settings = default_settings) -> float:
    return backoff_delay(
        max(attempts - 1, 0),
        base_seconds=config.queue_retry_base_seconds,
        max_seconds=config.queue_retry_max_seconds,
    )


def mark_error(
    db: Session,
    event_id,
    message: str,
    *,
    attempts: int,
    now: Optional[datetime] = None,
    config: Settings = default_settings,
) -> str:
    """Reschedule a failed event, or dead-letter it once attempts are exhausted.

    Returns the status written (error or dead).
    """
    now = now or datetime.now(timezone.utc)
    if attempts >= config.queue_max_attempts:
        mark_dead(db, event_id, message, now=now)
        return EventStatus.DEAD.value

    next_attempt_at = now + timedelta(seconds=retry_delay_seconds(attempts, config))
    db.query(InboundEvent).filter(InboundEvent.id == event_id).update(
        {
            InboundEvent.status: EventStatus.ERROR.value,
            InboundEvent.last_error: str(message)[:LAST_ERROR_MAX_CHARS],
            InboundEvent.next_attempt_at: next_attempt_at,
            InboundEvent.locked_at: None,
            InboundEvent.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()
    return EventStatus.ERROR.value


def mark_dead(db: Session, event_id, message: str, *, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)
    db.query(InboundEvent).filter(InboundEvent.id == event_id).update(
        {
            InboundEvent.status: EventStatus.DEAD.value,
            InboundEvent.meta: _meta_without_text(),
            InboundEvent.last_error: str(message)[:LAST_ERROR_MAX_CHARS],
            InboundEvent.next_attempt_at: None,
            InboundEvent.locked_at: None,
            InboundEvent.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()


def queue_stats(db: Session) -> dict[str, int]:
    rows = db.query(InboundEvent.status, func.count(InboundEvent.id)).group_by(InboundEvent.status).all()
    stats = {status.value: 0 for status in EventStatus}
    for status, count in rows:
        stats[str(status)] = int(count)
    return stats


def scrub_sender_text(db: Session, senders: list[str], now: Optional[datetime] = None) -> int:
    """Drop stored message text from every chat event of these senders. Caller commits."""
    if not senders:
        return 0
    now = now or datetime.now(timezone.utc)
    return (
        db.query(InboundEvent)
        .filter(InboundEvent.provider == Provider.CHAT.value, InboundEvent.sender.in_(senders))
        .update(
            {InboundEvent.meta: _meta_without_text(), InboundEvent.updated_at: now},
            synchronize_session=False,
        )
    )
