"""
PaymentDetail: typed link between a Payment and what it paid for.
Lookups from a session to its payment/artifact (and back) go through this table.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint

from app.db.base import Base


class PaymentDetail(Base):
    __tablename__ = "payment_details"
    __table_args__ = (UniqueConstraint("payment_id", "session_id", name="uq_payment_detail_link"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    payment_id = Column(String, ForeignKey("payments.id"), nullable=False, index=True)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=True, index=True)
    artifact_id = Column(String, nullable=True)
    session_mode = Column(String, nullable=False)  # interactive / one_shot / credit
    category = Column(String, nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
