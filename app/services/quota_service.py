from app.config import Settings, settings as default_settings

MIN_MEANINGFUL_CHARS = 20
MIN_MEANINGFUL_WORDS = 4


def is_meaningful_text(text: str) -> bool:
    """Only meaningful messages consume a free summary."""
    stripped = (text or "").strip()
    if len(stripped) < MIN_MEANINGFUL_CHARS:
        return False
    return len(stripped.split()) >= MIN_MEANINGFUL_WORDS


def should_paywall(user, text: str) -> bool:
    """Checked before any summarization work."""
    if (user.plan or "free") != "free":
        return False
    return is_meaningful_text(text) and (user.free_remaining or 0) <= 0


def build_paywall_message(config: Settings = default_settings) -> str:
    return f"You've used your {config.free_limit} free summaries.\n\nReply PAY to upgrade and keep summarizing."
