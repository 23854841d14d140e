import json
import logging
import sys

from app.logging_config import JSONFormatter, get_logger, hash_phone, mask_phone, redact


class TestJSONFormatter:
    def test_context_and_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("summarizer.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        record.context = {"event_id": "e1"}

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "ERROR"
        assert entry["message"] == "failed"
        assert entry["context"] == {"event_id": "e1"}
        assert "ValueError: boom" in entry["exception"]


class TestPiiHelpers:
    def test_redact(self):
        assert redact("abcdefghijklmnop") == "abcd****mnop"
        assert redact("short") == "****"
        assert redact(None) == "****"

    def test_mask_phone(self):
        assert mask_phone("+15551234567") == "+1****67"
        assert mask_phone(None) == "****"

    def test_hash_phone(self):
        assert hash_phone("+15551234567") == hash_phone("+15551234567")
        assert len(hash_phone("+15551234567")) == 64

    def test_logger_prefix(self):
        assert get_logger("worker").name == "summarizer.worker"
