"""Text command protocol: HELP, STATUS, PAY, STOP/PAUSE, START, DELETE, FEEDBACK, LANG <code>."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import User
from app.services import user_service
from app.services.billing_service import build_checkout_url

logger = get_logger("command_service")


class Command(str, Enum):
    HELP = "HELP"
    STATUS = "STATUS"
    PAY = "PAY"
    STOP = "STOP"
    START = "START"
    DELETE = "DELETE"
    FEEDBACK = "FEEDBACK"
    LANG = "LANG"


ALIASES = {
    "PAUSE": Command.STOP,
}


@dataclass(frozen=True)
class ParsedCommand:
    command: Command
    argument: Optional[str] = None


@dataclass
class CommandResult:
    command: Command
    reply_text: str
    state_changed: bool = False


HELP_LINES = [
    "WhatsApp Summarizer",
    "",
    "Send me a message and I'll summarize it.",
    "",
    "Commands:",
    "HELP - show this message",
    "STATUS - show your plan and remaining summaries",
    "PAY - get an upgrade link",
    "STOP - pause summaries",
    "START - resume summaries",
    "DELETE - erase your stored data",
    "FEEDBACK - tell us how we're doing",
    "LANG AUTO|EN|AR|ES - choose the summary language",
]

UNSUPPORTED_LANGUAGE_REPLY = "Unsupported language. Use LANG AUTO, LANG EN, LANG AR or LANG ES."


def normalize_command_text(text: Optional[str]) -> str:
    """Trim, collapse whitespace, uppercase, drop a leading "/" and trailing punctuation."""
    normalized = re.sub(r"\s+", " ", (text or "").strip()).upper()
    normalized = normalized.lstrip("/")
    return re.sub(r"[.!?]+$", "", normalized).strip()


def parse_command(text: Optional[str]) -> Optional[ParsedCommand]:
    """Return the command in text, or None when text should be summarized."""
    normalized = normalize_command_text(text)
    if not normalized:
        return None

    head, _, rest = normalized.partition(" ")
    if head == Command.LANG.value:
        return ParsedCommand(Command.LANG, rest or None)

    if normalized in ALIASES:
        return ParsedCommand(ALIASES[normalized])
    try:
        return ParsedCommand(Command(normalized))
    except ValueError:
        return None


def build_help_message(user: User) -> str:
    lang = user_service.get_language(user).upper()
    return "\n".join(HELP_LINES + ["", f"Current language: {lang}"])


def build_status_message(user: User) -> str:
    plan = user.plan or "free"
    remaining = user.free_remaining if plan == "free" else "N/A"
    paused = "YES" if user.status == "blocked" else "NO"
    return "\n".join(
        [
            "STATUS",
            f"Plan: {plan}",
            f"Free remaining: {remaining}",
            f"Language: {user_service.get_language(user).upper()}",
            f"Paused: {paused}",
            "",
            "Reply HELP to see commands.",
        ]
    )


def execute_command(
    db: Session,
    user: User,
    parsed: ParsedCommand,
    config: Settings = default_settings,
) -> CommandResult:
    """Apply the command's state change and return the confirmation to send."""
    command = parsed.command

    if command == Command.HELP:
        return CommandResult(command, build_help_message(user))

    if command == Command.STATUS:
        return CommandResult(command, build_status_message(user))

    if command == Command.PAY:
        url = build_checkout_url(user.phone_e164, config)
        return CommandResult(
            command,
            f"To upgrade, complete checkout here:\n{url}\n\nAfter payment, reply anything to continue.",
        )

    if command == Command.STOP:
        user_service.set_blocked(db, user, True)
        return CommandResult(
            command,
            "✅ Summaries paused.\n\nReply START to resume. Reply HELP for commands.",
            state_changed=True,
        )

    if command == Command.START:
        user_service.set_blocked(db, user, False)
        return CommandResult(
            command,
            "✅ Summaries resumed.\n\nSend a message to summarize, or reply HELP.",
            state_changed=True,
        )

    if command == Command.DELETE:
        deleted = user_service.reset_user_data(db, user)
        logger.info("User data erased", extra={"context": {"user_id": str(user.id), "summaries_deleted": deleted}})
        return CommandResult(
            command,
            "✅ Deleted.\n\nWe erased your stored summaries, preferences and usage history.",
            state_changed=True,
        )

    if command == Command.FEEDBACK:
        return CommandResult(
            command,
            f"Thanks for helping us improve!\n\nSend your feedback through the contact details at {config.terms_url}",
        )

    if command == Command.LANG:
        lang = (parsed.argument or "").lower()
        if lang not in user_service.SUPPORTED_LANGUAGES:
            return CommandResult(command, UNSUPPORTED_LANGUAGE_REPLY)
        user_service.set_language(db, user, lang)
        return CommandResult(command, f"✅ Language set to: {lang.upper()}", state_changed=True)

    raise ValueError(f"Unhandled command: {command}")
