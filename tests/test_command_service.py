from unittest.mock import patch

import pytest

from app.errors import ConfigurationError
from app.services.command_service import (
    UNSUPPORTED_LANGUAGE_REPLY,
    Command,
    ParsedCommand,
    execute_command,
    normalize_command_text,
    parse_command,
)


class TestNormalize:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("  help  ", "HELP"),
            ("Stop!", "STOP"),
            ("/status", "STATUS"),
            ("lang    ar.", "LANG AR"),
            ("start?!", "START"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_command_text(raw) == expected


class TestParse:
    @pytest.mark.parametrize("text", ["HELP", "STATUS", "PAY", "STOP", "START", "DELETE", "FEEDBACK"])
    def test_fixed_commands(self, text):
        assert parse_command(text.lower()) == ParsedCommand(Command(text))

    def test_pause_is_stop(self):
        assert parse_command("pause") == ParsedCommand(Command.STOP)

    def test_lang_with_argument(self):
        assert parse_command("lang es") == ParsedCommand(Command.LANG, "ES")

    def test_bare_lang(self):
        assert parse_command("LANG") == ParsedCommand(Command.LANG, None)

    @pytest.mark.parametrize("text", ["please stop sending me these", "helpful stuff", "STOP IT", "language settings"])
    def test_non_commands_fall_through(self, text):
        assert parse_command(text) is None


class TestExecute:
    def test_stop_blocks_user(self, db_session, make_user, make_settings):
        user = make_user()
        with patch("app.services.user_service.set_blocked") as set_blocked:
            result = execute_command(db_session, user, ParsedCommand(Command.STOP), make_settings())
        set_blocked.assert_called_once_with(db_session, user, True)
        assert result.state_changed is True
        assert "paused" in result.reply_text

    def test_start_unblocks_user(self, db_session, make_user, make_settings):
        user = make_user(status="blocked")
        with patch("app.services.user_service.set_blocked") as set_blocked:
            result = execute_command(db_session, user, ParsedCommand(Command.START), make_settings())
        set_blocked.assert_called_once_with(db_session, user, False)
        assert "resumed" in result.reply_text

    def test_valid_language_persists(self, db_session, make_user, make_settings):
        user = make_user()
        with patch("app.services.user_service.set_language") as set_language:
            result = execute_command(db_session, user, ParsedCommand(Command.LANG, "AR"), make_settings())
        set_language.assert_called_once_with(db_session, user, "ar")
        assert result.reply_text == "✅ Language set to: AR"

    @pytest.mark.parametrize("argument", ["FR", None, "ENGLISH"])
    def test_invalid_language_does_not_mutate(self, db_session, make_user, make_settings, argument):
        with patch("app.services.user_service.set_language") as set_language:
            result = execute_command(db_session, make_user(), ParsedCommand(Command.LANG, argument), make_settings())
        set_language.assert_not_called()
        assert result.reply_text == UNSUPPORTED_LANGUAGE_REPLY
        assert result.state_changed is False

    def test_help_shows_language(self, db_session, make_user, make_settings):
        result = execute_command(db_session, make_user(preferences={"lang": "es"}), ParsedCommand(Command.HELP), make_settings())
        assert "Current language: ES" in result.reply_text
        assert "LANG" in result.reply_text

    def test_status(self, db_session, make_user, make_settings):
        result = execute_command(
            db_session, make_user(free_remaining=2, preferences={"lang": "ar"}), ParsedCommand(Command.STATUS), make_settings()
        )
        assert "Plan: free" in result.reply_text
        assert "Free remaining: 2" in result.reply_text
        assert "Language: AR" in result.reply_text

    def test_status_paid_plan(self, db_session, make_user, make_settings):
        result = execute_command(db_session, make_user(plan="monthly"), ParsedCommand(Command.STATUS), make_settings())
        assert "Free remaining: N/A" in result.reply_text

    def test_pay_embeds_phone(self, db_session, make_user, make_settings):
        config = make_settings(billing_checkout_url="https://shop.example/checkout/buy/abc")
        result = execute_command(db_session, make_user(), ParsedCommand(Command.PAY), config)
        assert "https://shop.example/checkout/buy/abc?checkout%5Bcustom%5D%5Bwa_number%5D=%2B15551234567" in result.reply_text

    def test_pay_without_checkout_url(self, db_session, make_user, make_settings):
        with pytest.raises(ConfigurationError):
            execute_command(db_session, make_user(), ParsedCommand(Command.PAY), make_settings(billing_checkout_url=None))

    def test_delete_resets_data(self, db_session, make_user, make_settings):
        user = make_user()
        with patch("app.services.user_service.reset_user_data", return_value=2) as reset:
            result = execute_command(db_session, user, ParsedCommand(Command.DELETE), make_settings())
        reset.assert_called_once_with(db_session, user)
        assert result.state_changed is True

    def test_feedback_has_no_side_effects(self, db_session, make_user, make_settings):
        result = execute_command(db_session, make_user(), ParsedCommand(Command.FEEDBACK), make_settings())
        assert result.state_changed is False
        db_session.commit.assert_not_called()
