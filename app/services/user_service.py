import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, or_
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.logging_config import hash_phone
from app.models import Summary, User
from app.services import event_store
from app.services.extraction_service import normalize_phone_e164

SUPPORTED_LANGUAGES = ("auto", "en", "ar", "es")


def phone_variants(phone: str) -> list[str]:
    """All stored representations of one phone number (with and without "+")."""
    normalized = normalize_phone_e164(phone)
    if not normalized:
        return []
    return [normalized, normalized[1:]]


def get_user(db: Session, phone: str) -> Optional[User]:
    variants = phone_variants(phone)
    if not variants:
        return None
    return db.query(User).filter(User.phone_e164.in_(variants)).first()


def get_or_create_user(db: Session, phone: str, config: Settings = default_settings) -> User:
    """Find user by phone or create one seeded with the free quota."""
    phone_e164 = normalize_phone_e164(phone)
    if not phone_e164:
        raise ValueError("phone is required")

    user = get_user(db, phone_e164)
    if user:
        return user

    now = datetime.now(timezone.utc)
    db.execute(
        insert(User)
        .values(
            id=uuid.uuid4(),
            phone_e164=phone_e164,
            phone_hash=hash_phone(phone_e164),
            plan="free",
            status="active",
            free_remaining=config.free_limit,
            free_used=0,
            preferences={"lang": "auto"},
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["phone_e164"])
    )
    db.commit()
    return get_user(db, phone_e164)


def _update_user(db: Session, user: User, values: dict) -> int:
    values[User.updated_at] = datetime.now(timezone.utc)
    count = db.query(User).filter(User.id == user.id).update(values, synchronize_session=False)
    db.commit()
    db.refresh(user)
    return count


def touch_last_message(db: Session, user: User, now: Optional[datetime] = None) -> None:
    _update_user(db, user, {User.last_user_message_at: now or datetime.now(timezone.utc)})


def set_blocked(db: Session, user: User, blocked: bool) -> None:
    if blocked:
        _update_user(db, user, {User.status: "blocked", User.blocked_at: datetime.now(timezone.utc)})
    else:
        _update_user(db, user, {User.status: "active", User.blocked_at: None})


def get_language(user: User) -> str:
    lang = (user.preferences or {}).get("lang") or "auto"
    return lang if lang in SUPPORTED_LANGUAGES else "auto"


def set_language(db: Session, user: User, lang: str) -> None:
    lang = lang.lower()
    if lang not in SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language: {lang}")
    preferences = dict(user.preferences or {})
    preferences["lang"] = lang
    _update_user(db, user, {User.preferences: preferences})


def reset_user_data(db: Session, user: User) -> int:
    """Erase preferences, stored summaries, queued message text and the usage counter.

    Returns the number of deleted summaries.
    """
    result = db.execute(delete(Summary).where(Summary.user_id == user.id))
    event_store.scrub_sender_text(db, phone_variants(user.phone_e164))
    _update_user(db, user, {User.preferences: {}, User.free_used: 0})
    return result.rowcount or 0


def decrement_free_remaining(db: Session, user: User) -> bool:
    """Use one free summary. No-op for paid plans and at zero."""
    count = (
        db.query(User)
        .filter(User.id == user.id, User.plan == "free", User.free_remaining > 0)
        .update(
            {
                User.free_remaining: User.free_remaining - 1,
                User.free_used: User.free_used + 1,
                User.updated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return count == 1


def _conditional_claim(db: Session, phone: str, condition, values: dict) -> bool:
    variants = phone_variants(phone)
    if not variants:
        return False
    count = (
        db.query(User)
        .filter(User.phone_e164.in_(variants), condition)
        .update(values, synchronize_session=False)
    )
    db.commit()
    return count == 1


def claim_privacy_notice(db: Session, phone: str, now: Optional[datetime] = None) -> bool:
    """Set privacy_notice_sent_at only if it is still null. True for the single winner."""
    now = now or datetime.now(timezone.utc)
    return _conditional_claim(
        db,
        phone,
        User.privacy_notice_sent_at.is_(None),
        {User.privacy_notice_sent_at: now, User.updated_at: now},
    )


def release_privacy_notice(db: Session, phone: str, claimed_at: datetime) -> bool:
    """Undo a notice claim that was never delivered, so the next attempt sends it again."""
    return _conditional_claim(
        db,
        phone,
        User.privacy_notice_sent_at == claimed_at,
        {User.privacy_notice_sent_at: None, User.updated_at: datetime.now(timezone.utc)},
    )


def claim_tos_acceptance(db: Session, phone: str, tos_version: str, now: Optional[datetime] = None) -> bool:
    """Record acceptance of tos_version unless it is already recorded."""
    now = now or datetime.now(timezone.utc)
    return _conditional_claim(
        db,
        phone,
        or_(User.tos_accepted_at.is_(None), User.tos_version.is_distinct_from(tos_version)),
        {User.tos_accepted_at: now, User.tos_version: tos_version, User.updated_at: now},
    )
