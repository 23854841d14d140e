"""Per-provider pipelines run by the worker for each claimed event."""

from typing import Awaitable, Callable, Protocol

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.errors import PermanentEventError
from app.logging_config import get_logger, mask_phone
from app.models import Provider
from app.schemas.events import BillingEventMeta
from app.services import user_service
from app.services.billing_service import reconcile_billing_event
from app.services.command_service import execute_command
from app.services.event_store import ClaimedEvent
from app.services.legal_service import evaluate_consent
from app.services.quota_service import build_paywall_message, is_meaningful_text, should_paywall
from app.services.summarizer_service import Summarizer
from app.services.summary_service import record_summary
from app.services.text_crypto import read_event_text

logger = get_logger("processors")


class Messenger(Protocol):
    async def send_text(self, recipient: str, body: str) -> dict: ...


class ChatProcessor:
    def __init__(self, summarizer: Summarizer, messenger: Messenger, config: Settings = default_settings):
        self.summarizer = summarizer
        self.messenger = messenger
        self.config = config

    async def process(self, db: Session, event: ClaimedEvent) -> str:
        sender = event.sender
        text = read_event_text(event.meta, self.config).strip()
        if not sender or not text:
            raise PermanentEventError("Chat event missing sender or text")

        user = user_service.get_or_create_user(db, sender, self.config)
        user_service.touch_last_message(db, user)

        decision = evaluate_consent(db, user, text, self.config)

        if decision.command is not None:
            result = execute_command(db, user, decision.command, self.config)
            await self.messenger.send_text(sender, result.reply_text)
            return f"command_{result.command.value.lower()}"

        if decision.stop:
            if decision.reply_text:
                try:
                    await self.messenger.send_text(sender, decision.reply_text)
                except Exception:
                    if decision.notice_claimed_at is not None:
                        # Undelivered notice; the retry must claim and send it again.
                        user_service.release_privacy_notice(db, user.phone_e164, decision.notice_claimed_at)
                    raise
            return decision.outcome

        if should_paywall(user, text):
            await self.messenger.send_text(sender, build_paywall_message(self.config))
            return "paywall"

        summary = await self.summarizer.summarize(text, user_service.get_language(user))
        await self.messenger.send_text(sender, summary.text)

        created = record_summary(db, user, event.id, summary)
        if not created:
            logger.info("Summary already recorded for event", extra={"context": {"event_id": str(event.id)}})
            return "summarized_replay"
        if is_meaningful_text(text):
            user_service.decrement_free_remaining(db, user)
        logger.info(
            "Summary delivered",
            extra={"context": {"phone": mask_phone(sender), "dry_run": summary.dry_run}},
        )
        return "summarized"


class BillingProcessor:
    def __init__(self, config: Settings = default_settings):
        self.config = config

    async def process(self, db: Session, event: ClaimedEvent) -> str:
        try:
            meta = BillingEventMeta.model_validate(event.meta)
        except ValidationError as exc:
            raise PermanentEventError(f"Billing event metadata invalid: {exc.error_count()} errors") from exc
        return reconcile_billing_event(db, meta, self.config).outcome


Handler = Callable[[Session, ClaimedEvent], Awaitable[str]]


class EventProcessor:
    """Routes a claimed event to the pipeline for its provider."""

    def __init__(self, chat: ChatProcessor, billing: BillingProcessor):
        self.handlers: dict[Provider, Handler] = {
            Provider.CHAT: chat.process,
            Provider.BILLING: billing.process,
        }

    async def process(self, db: Session, event: ClaimedEvent) -> str:
        try:
            provider = Provider(event.provider)
        except ValueError as exc:
            raise PermanentEventError(f"Unknown provider: {event.provider}") from exc
        return await self.handlers[provider](db, event)
