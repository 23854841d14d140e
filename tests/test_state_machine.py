from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.services.state_machine import (
    ConsentState,
    InvalidTransitionError,
    can_transition,
    derive_state,
    transition,
)

SENT = datetime(2026, 1, 1, tzinfo=timezone.utc)


def user(status="active", notice=None, tos=None, tos_version=None):
    return SimpleNamespace(status=status, privacy_notice_sent_at=notice, tos_accepted_at=tos, tos_version=tos_version)


class TestValidTransitions:
    def test_no_notice_to_notice_sent(self):
        assert transition(ConsentState.NO_NOTICE, ConsentState.NOTICE_SENT) == ConsentState.NOTICE_SENT

    def test_notice_sent_to_compliant(self):
        assert transition(ConsentState.NOTICE_SENT, ConsentState.COMPLIANT) == ConsentState.COMPLIANT

    def test_tos_pending_to_compliant(self):
        assert transition(ConsentState.TOS_PENDING, ConsentState.COMPLIANT) == ConsentState.COMPLIANT

    @pytest.mark.parametrize("state", [s for s in ConsentState if s != ConsentState.BLOCKED])
    def test_every_state_can_block(self, state):
        assert can_transition(state, ConsentState.BLOCKED)


class TestInvalidTransitions:
    def test_cannot_skip_notice(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConsentState.NO_NOTICE, ConsentState.COMPLIANT)

    def test_notice_is_never_unsent(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConsentState.COMPLIANT, ConsentState.NO_NOTICE)

    def test_same_state(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConsentState.COMPLIANT, ConsentState.COMPLIANT)


class TestDeriveState:
    def test_blocked_wins(self):
        assert derive_state(user(status="blocked", notice=SENT, tos=SENT), "v1") == ConsentState.BLOCKED

    def test_no_notice(self):
        assert derive_state(user(), "v1") == ConsentState.NO_NOTICE

    def test_notice_sent(self):
        assert derive_state(user(notice=SENT), "v1") == ConsentState.NOTICE_SENT

    def test_tos_version_changed(self):
        assert derive_state(user(notice=SENT, tos=SENT, tos_version="v0"), "v1") == ConsentState.TOS_PENDING

    def test_compliant(self):
        assert derive_state(user(notice=SENT, tos=SENT, tos_version="v1"), "v1") == ConsentState.COMPLIANT
