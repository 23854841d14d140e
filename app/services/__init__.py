from app.services.state_machine import (
    ConsentState,
    InvalidTransitionError,
    can_transition,
    derive_state,
    transition,
)
from app.services.user_service import (
    get_or_create_user,
    phone_variants,
)

__all__ = [
    "ConsentState",
    "InvalidTransitionError",
    "can_transition",
    "derive_state",
    "get_or_create_user",
    "phone_variants",
    "transition",
]
