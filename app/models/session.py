from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.db.base import Base, JSONType


class SessionMode:
    INTERACTIVE = "interactive"
    ONE_SHOT = "one_shot"

    ALL = (INTERACTIVE, ONE_SHOT)


class SessionStatus:
    CREATED = "created"
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    LIVE = (CREATED, ACTIVE)
    TERMINAL = (EXHAUSTED, EXPIRED, CANCELLED)


class Session(Base):
    __tablename__ = "sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False)
    form_type = Column(String, nullable=True)  # ASK / DAILY / TRADITIONAL
    mode = Column(String, nullable=False)
    remaining_seconds = Column(Integer, nullable=False, default=0)  # 0 for one-shot
    is_active = Column(Boolean, nullable=False, default=True)
    status = Column(String, nullable=False, default=SessionStatus.CREATED)
    funding_source = Column(String, nullable=False)  # payment / free_allowance
    expires_at = Column(DateTime(timezone=True), nullable=False)
    user_input = Column(Text, nullable=True)
    user_data = Column(JSONType, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
