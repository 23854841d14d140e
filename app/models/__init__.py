from app.models.inbound_event import EventStatus, InboundEvent, Provider
from app.models.subscription import Subscription
from app.models.summary import Summary
from app.models.user import User

__all__ = [
    "EventStatus",
    "InboundEvent",
    "Provider",
    "User",
    "Subscription",
    "Summary",
]
