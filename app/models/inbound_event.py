import uuid
from enum import Enum

from sqlalchemy import Column, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.sql import func

from app.database import Base


class Provider(str, Enum):
    CHAT = "whatsapp"
    BILLING = "lemonsqueezy"


class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"
    DEAD = "dead"


class InboundEvent(Base):
    __tablename__ = "inbound_events"
    __table_args__ = (UniqueConstraint("provider", "provider_event_id", name="uq_inbound_events_provider_event"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider = Column(Text, nullable=False)
    provider_event_id = Column(Text, nullable=False)
    event_type = Column(Text)
    payload_hash = Column(Text)
    sender = Column(Text)  # E.164 phone, chat sender or billing custom_data
    meta = Column(JSONB, nullable=False, default=dict)
    status = Column(Text, nullable=False, default=EventStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    locked_at = Column(TIMESTAMP(timezone=True))
    next_attempt_at = Column(TIMESTAMP(timezone=True))
    last_error = Column(Text)
    processed_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
