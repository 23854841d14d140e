import uuid

from sqlalchemy import Column, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from app.database import Base


class Summary(Base):
    __tablename__ = "summaries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    inbound_event_id = Column(UUID(as_uuid=True), ForeignKey("inbound_events.id"), unique=True)
    input_chars = Column(Integer, nullable=False)
    summary_text = Column(Text, nullable=False)
    model = Column(Text)
    fingerprint = Column(Text)
    cost_estimate = Column(Numeric(12, 6))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
