from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, UniqueConstraint

from app.db.base import Base


class TimeCreditLedger(Base):
    """One row per (user, UTC day). Nothing carries over to the next day."""

    __tablename__ = "time_credit_ledger"
    __table_args__ = (UniqueConstraint("user_id", "credit_date", name="uq_time_credit_user_day"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    credit_date = Column(Date, nullable=False)
    free_used = Column(Boolean, nullable=False, default=False)
    paid_minutes = Column(Integer, nullable=False, default=0)  # increment only
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
