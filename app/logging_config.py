"""JSON logging for the API and the worker, plus PII-safe helpers for log fields."""

import hashlib
import json
import logging
import sys
from datetime import datetime, timezone

LOGGER_PREFIX = "summarizer"
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """One JSON object per line; structured fields go in record.context."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def redact(value: object) -> str:
    """Secrets and signatures: keep only the first and last four characters."""
    s = str(value or "")
    if len(s) <= 8:
        return "****"
    return f"{s[:4]}****{s[-4:]}"


def mask_phone(phone: str | None) -> str:
    s = str(phone or "")
    if len(s) <= 4:
        return "****"
    return f"{s[:2]}****{s[-2:]}"


def hash_phone(phone: str) -> str:
    return hashlib.sha256(str(phone).encode("utf-8")).hexdigest()
