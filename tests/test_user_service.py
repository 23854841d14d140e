import uuid
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.dialects import postgresql

from app.models import User
from app.services import user_service
from app.services.user_service import (
    claim_privacy_notice,
    claim_tos_acceptance,
    decrement_free_remaining,
    get_or_create_user,
    phone_variants,
    release_privacy_notice,
    set_language,
)


def _filter_sql(db_session) -> str:
    criteria = db_session.query.return_value.filter.call_args[0]
    return " AND ".join(
        str(c.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True})) for c in criteria
    )


class TestPhoneVariants:
    def test_with_and_without_plus(self):
        assert phone_variants("+15551234567") == ["+15551234567", "15551234567"]
        assert phone_variants("15551234567") == ["+15551234567", "15551234567"]

    def test_empty(self):
        assert phone_variants("") == []


class TestGetOrCreate:
    def test_existing_user_returned(self, db_session, make_settings):
        existing = Mock()
        db_session.query.return_value.filter.return_value.first.return_value = existing
        assert get_or_create_user(db_session, "+15551234567", make_settings()) is existing
        db_session.execute.assert_not_called()

    def test_new_user_seeded_with_free_limit(self, db_session, make_settings):
        created = Mock()
        db_session.query.return_value.filter.return_value.first.side_effect = [None, created]

        user = get_or_create_user(db_session, "15551234567", make_settings(free_limit=5))

        assert user is created
        compiled = db_session.execute.call_args[0][0].compile(dialect=postgresql.dialect())
        assert "ON CONFLICT (phone_e164) DO NOTHING" in str(compiled)
        assert compiled.params["free_remaining"] == 5
        assert compiled.params["phone_e164"] == "+15551234567"
        assert len(compiled.params["phone_hash"]) == 64

    def test_missing_phone(self, db_session, make_settings):
        with pytest.raises(ValueError):
            get_or_create_user(db_session, "", make_settings())


class TestConditionalClaims:
    def test_privacy_notice_claim_matches_all_variants(self, db_session):
        db_session.query.return_value.filter.return_value.update.return_value = 1

        assert claim_privacy_notice(db_session, "+15551234567") is True

        sql = _filter_sql(db_session)
        assert "'+15551234567'" in sql
        assert "'15551234567'" in sql
        assert "users.privacy_notice_sent_at IS NULL" in sql

    def test_second_claim_loses(self, db_session):
        db_session.query.return_value.filter.return_value.update.side_effect = [1, 0]
        results = [claim_privacy_notice(db_session, "+15551234567") for _ in range(2)]
        assert results == [True, False]

    def test_release_only_clears_own_claim(self, db_session):
        claimed_at = datetime(2026, 1, 1, 9, 30, tzinfo=timezone.utc)
        db_session.query.return_value.filter.return_value.update.return_value = 1

        assert release_privacy_notice(db_session, "+15551234567", claimed_at) is True

        sql = _filter_sql(db_session)
        assert "users.privacy_notice_sent_at = " in sql
        assert "2026-01-01 09:30:00" in sql
        values = db_session.query.return_value.filter.return_value.update.call_args[0][0]
        assert values[User.privacy_notice_sent_at] is None

    def test_tos_claim_also_matches_stale_version(self, db_session):
        db_session.query.return_value.filter.return_value.update.return_value = 0

        assert claim_tos_acceptance(db_session, "+15551234567", "2026-01") is False

        sql = _filter_sql(db_session)
        assert "users.tos_accepted_at IS NULL" in sql
        assert "IS DISTINCT FROM '2026-01'" in sql


class TestDecrement:
    def test_conditional_update_never_goes_negative(self, db_session):
        db_session.query.return_value.filter.return_value.update.return_value = 0
        user = Mock(id=uuid.uuid4())

        assert decrement_free_remaining(db_session, user) is False

        sql = _filter_sql(db_session)
        assert "users.plan = 'free'" in sql
        assert "users.free_remaining > 0" in sql

    def test_decrement_applies(self, db_session):
        db_session.query.return_value.filter.return_value.update.return_value = 1
        assert decrement_free_remaining(db_session, Mock(id=uuid.uuid4())) is True
        values = db_session.query.return_value.filter.return_value.update.call_args[0][0]
        assert User.free_remaining in values
        assert User.free_used in values


class TestPreferences:
    def test_set_language_rejects_unsupported(self, db_session, make_user):
        with pytest.raises(ValueError):
            set_language(db_session, make_user(), "fr")
        db_session.query.assert_not_called()

    def test_set_language_updates_preferences(self, db_session, make_user):
        set_language(db_session, make_user(preferences={"lang": "auto", "tz": "UTC"}), "AR")
        values = db_session.query.return_value.filter.return_value.update.call_args[0][0]
        assert values[User.preferences] == {"lang": "ar", "tz": "UTC"}

    def test_get_language_defaults_to_auto(self, make_user):
        assert user_service.get_language(make_user(preferences={})) == "auto"
        assert user_service.get_language(make_user(preferences={"lang": "xx"})) == "auto"


class TestResetUserData:
    def test_erases_summaries_and_queued_text(self, db_session, make_user):
        user = make_user()
        db_session.execute.return_value = Mock(rowcount=2)

        with patch("app.services.event_store.scrub_sender_text") as scrub:
            assert user_service.reset_user_data(db_session, user) == 2

        scrub.assert_called_once_with(db_session, ["+15551234567", "15551234567"])
        values = db_session.query.return_value.filter.return_value.update.call_args[0][0]
        assert values[User.preferences] == {}
        assert values[User.free_used] == 0
        assert User.free_remaining not in values
        db_session.commit.assert_called_once()
