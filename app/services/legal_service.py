from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger, mask_phone
from app.models import User
from app.services import user_service
from app.services.command_service import ParsedCommand, parse_command
from app.services.state_machine import ConsentState, derive_state, transition

logger = get_logger("legal_service")

PAUSED_REPLY = "⛔ Summaries are paused.\n\nReply START to resume, or HELP for commands."


@dataclass
class LegalDecision:
    stop: bool
    outcome: str  # command, blocked, privacy_notice_sent, notice_pending, tos_accepted, tos_accept_implied, legal_ok
    state: ConsentState
    reply_text: Optional[str] = None
    command: Optional[ParsedCommand] = None
    notice_claimed_at: Optional[datetime] = None


def build_privacy_notice(config: Settings = default_settings) -> str:
    return (
        "👋 Welcome to WhatsApp Summarizer.\n"
        "By messaging here, you allow us to process your messages to generate summaries.\n"
        "Please don't send sensitive or confidential information.\n"
        "Reply HELP for commands. STOP to opt out. DELETE to erase stored data.\n"
        f"Terms: {config.terms_url}\n"
        f"Privacy: {config.privacy_url}"
    )


def evaluate_consent(
    db: Session,
    user: User,
    text: str,
    config: Settings = default_settings,
) -> LegalDecision:
    """Decide whether an inbound message may continue to summarization.

    Commands always pass through so that STOP/START/DELETE work in every
    state. The privacy notice is claimed with a conditional update, so only
    one concurrent worker ever sends it.
    """
    state = derive_state(user, config.tos_version)

    parsed = parse_command(text)
    if parsed is not None:
        return LegalDecision(stop=False, outcome="command", state=state, command=parsed)

    if state == ConsentState.BLOCKED:
        return LegalDecision(stop=True, outcome="blocked", state=state, reply_text=PAUSED_REPLY)

    if state == ConsentState.NO_NOTICE:
        claimed_at = datetime.now(timezone.utc)
        if user_service.claim_privacy_notice(db, user.phone_e164, claimed_at):
            logger.info("Privacy notice claimed", extra={"context": {"phone": mask_phone(user.phone_e164)}})
            return LegalDecision(
                stop=True,
                outcome="privacy_notice_sent",
                state=transition(state, ConsentState.NOTICE_SENT),
                reply_text=build_privacy_notice(config),
                notice_claimed_at=claimed_at,
            )
        return LegalDecision(stop=True, outcome="notice_pending", state=state)

    if state in (ConsentState.NOTICE_SENT, ConsentState.TOS_PENDING):
        if user_service.claim_tos_acceptance(db, user.phone_e164, config.tos_version):
            return LegalDecision(stop=False, outcome="tos_accepted", state=transition(state, ConsentState.COMPLIANT))
        return LegalDecision(stop=False, outcome="tos_accept_implied", state=state)

    return LegalDecision(stop=False, outcome="legal_ok", state=state)
