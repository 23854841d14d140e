import uuid

from sqlalchemy import Column, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.sql import func

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_e164 = Column(Text, nullable=False, unique=True)
    phone_hash = Column(Text, nullable=False)
    plan = Column(Text, nullable=False, default="free")  # free, paid, monthly, annual, founder
    status = Column(Text, nullable=False, default="active")  # active, blocked
    blocked_at = Column(TIMESTAMP(timezone=True))
    free_remaining = Column(Integer, nullable=False, default=0)
    free_used = Column(Integer, nullable=False, default=0)
    privacy_notice_sent_at = Column(TIMESTAMP(timezone=True))
    tos_accepted_at = Column(TIMESTAMP(timezone=True))
    tos_version = Column(Text)
    preferences = Column(JSONB, nullable=False, default=dict)
    last_user_message_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
