from enum import Enum


class ConsentState(str, Enum):
    NO_NOTICE = "no_notice"
    NOTICE_SENT = "notice_sent"
    TOS_PENDING = "tos_pending"
    COMPLIANT = "compliant"
    BLOCKED = "blocked"


VALID_TRANSITIONS = {
    ConsentState.NO_NOTICE: [ConsentState.NOTICE_SENT, ConsentState.BLOCKED],
    ConsentState.NOTICE_SENT: [ConsentState.TOS_PENDING, ConsentState.COMPLIANT, ConsentState.BLOCKED],
    ConsentState.TOS_PENDING: [ConsentState.COMPLIANT, ConsentState.BLOCKED],
    ConsentState.COMPLIANT: [ConsentState.BLOCKED],
    ConsentState.BLOCKED: [ConsentState.NO_NOTICE, ConsentState.NOTICE_SENT, ConsentState.COMPLIANT],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ConsentState, to_state: ConsentState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: ConsentState, to_state: ConsentState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: ConsentState, to_state: ConsentState) -> ConsentState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def derive_state(user, tos_version: str) -> ConsentState:
    """Consent state implied by the user's stored columns."""
    if user.status == "blocked":
        return ConsentState.BLOCKED
    if user.privacy_notice_sent_at is None:
        return ConsentState.NO_NOTICE
    if user.tos_accepted_at is None:
        return ConsentState.NOTICE_SENT
    if user.tos_version != tos_version:
        return ConsentState.TOS_PENDING
    return ConsentState.COMPLIANT
