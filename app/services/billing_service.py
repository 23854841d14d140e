from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.errors import ConfigurationError, PermanentEventError
from app.logging_config import get_logger, mask_phone
from app.models import Subscription, User
from app.schemas.events import BillingEventMeta
from app.services.extraction_service import parse_timestamp
from app.services.user_service import phone_variants

logger = get_logger("billing_service")

PAID_EVENTS = frozenset(
    {
        "subscription_created",
        "subscription_updated",
        "subscription_payment_success",
        "subscription_payment_recovered",
        "subscription_resumed",
        "subscription_unpaused",
    }
)

FREE_EVENTS = frozenset(
    {
        "subscription_cancelled",
        "subscription_expired",
        "subscription_paused",
        "subscription_payment_failed",
    }
)

EVENT_STATUS = {
    "subscription_created": "active",
    "subscription_updated": "active",
    "subscription_resumed": "active",
    "subscription_unpaused": "active",
    "subscription_payment_success": "active",
    "subscription_payment_recovered": "active",
    "subscription_cancelled": "cancelled",
    "subscription_expired": "expired",
    "subscription_paused": "paused",
    "subscription_payment_failed": "past_due",
}

CHECKOUT_PHONE_PARAM = "checkout[custom][wa_number]"


@dataclass
class ReconcileResult:
    subscription_id: str
    wa_number: str
    plan: Optional[str]
    plan_applied: bool
    outcome: str  # plan_updated, no_op, test_mode_ignored


def build_checkout_url(phone: str, config: Settings = default_settings) -> str:
    """Checkout link carrying the phone as custom data for webhook correlation."""
    if not config.billing_checkout_url:
        raise ConfigurationError("BILLING_CHECKOUT_URL is not configured")
    parts = urlsplit(config.billing_checkout_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != CHECKOUT_PHONE_PARAM]
    query.append((CHECKOUT_PHONE_PARAM, phone))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def plan_for_event(event_name: str, variant_id: Optional[str] = None, config: Settings = default_settings) -> Optional[str]:
    """Plan implied by an event name, or None for events that do not change the plan."""
    if event_name in PAID_EVENTS:
        if variant_id and variant_id in config.billing_variant_plans:
            return config.billing_variant_plans[variant_id]
        return "paid"
    if event_name in FREE_EVENTS:
        return "free"
    return None


def subscription_status_for(meta: BillingEventMeta) -> str:
    if meta.status:
        return meta.status
    return EVENT_STATUS.get(meta.event_name, meta.event_name)


def _to_datetime(value: Optional[str]) -> Optional[datetime]:
    iso = parse_timestamp(value)
    return datetime.fromisoformat(iso) if iso else None


def upsert_subscription(db: Session, meta: BillingEventMeta, plan: Optional[str]) -> None:
    now = datetime.now(timezone.utc)
    values = {
        "external_subscription_id": meta.subscription_id,
        "wa_number": meta.wa_number,
        "status": subscription_status_for(meta),
        "plan": plan or "paid",
        "last_event_name": meta.event_name,
        "renews_at": _to_datetime(meta.renews_at),
        "ends_at": _to_datetime(meta.ends_at),
        "customer_id": meta.customer_id,
        "test_mode": meta.test_mode,
        "updated_at": now,
    }
    update_values = {k: v for k, v in values.items() if k != "external_subscription_id"}
    if plan is None:
        # Unrecognized events keep the stored plan.
        update_values.pop("plan")
    stmt = (
        insert(Subscription)
        .values(created_at=now, **values)
        .on_conflict_do_update(index_elements=["external_subscription_id"], set_=update_values)
    )
    db.execute(stmt)


def reconcile_billing_event(
    db: Session,
    meta: BillingEventMeta,
    config: Settings = default_settings,
) -> ReconcileResult:
    """Upsert the subscription row, then apply the plan implied by the event name."""
    if not meta.wa_number or not meta.subscription_id:
        raise PermanentEventError(f"Billing event missing wa_number or subscription_id (event={meta.event_name})")

    plan = plan_for_event(meta.event_name, meta.variant_id, config)
    upsert_subscription(db, meta, plan)

    if plan is None:
        db.commit()
        logger.info("Billing event no-op", extra={"context": {"event_name": meta.event_name}})
        return ReconcileResult(meta.subscription_id, meta.wa_number, None, False, "no_op")

    if meta.test_mode and not config.billing_test_mode:
        db.commit()
        logger.warning(
            "Test-mode billing event ignored in live mode",
            extra={"context": {"event_name": meta.event_name, "wa_number": mask_phone(meta.wa_number)}},
        )
        return ReconcileResult(meta.subscription_id, meta.wa_number, plan, False, "test_mode_ignored")

    db.query(User).filter(User.phone_e164.in_(phone_variants(meta.wa_number))).update(
        {User.plan: plan, User.updated_at: datetime.now(timezone.utc)},
        synchronize_session=False,
    )
    db.commit()
    logger.info(
        "Billing event applied",
        extra={"context": {"event_name": meta.event_name, "wa_number": mask_phone(meta.wa_number), "plan": plan}},
    )
    return ReconcileResult(meta.subscription_id, meta.wa_number, plan, True, "plan_updated")
