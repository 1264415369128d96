"""
Payment: the money side of an Order.
gateway_reference is written at creation and corrected to the gateway's canonical
payment id the first time a confirmation source reports it.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.db.base import Base, JSONType
from app.models.order import OrderStatus


class PaymentStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    USER_CANCELLED = "USER_CANCELLED"
    REFUNDED = "REFUNDED"

    ALL = (PENDING, COMPLETED, FAILED, CANCELLED, USER_CANCELLED, REFUNDED)
    TERMINAL = (COMPLETED, FAILED, CANCELLED, USER_CANCELLED, REFUNDED)


# The only observable (order, payment) combinations.
ORDER_TO_PAYMENT_STATUS = {
    OrderStatus.PENDING: PaymentStatus.PENDING,
    OrderStatus.PAID: PaymentStatus.COMPLETED,
    OrderStatus.FAILED: PaymentStatus.FAILED,
    OrderStatus.CANCELLED: PaymentStatus.CANCELLED,
    OrderStatus.USER_CANCELLED: PaymentStatus.USER_CANCELLED,
    OrderStatus.REFUNDED: PaymentStatus.REFUNDED,
}
PAYMENT_TO_ORDER_STATUS = {v: k for k, v in ORDER_TO_PAYMENT_STATUS.items()}


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(String, ForeignKey("orders.id"), unique=True, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    gateway_reference = Column(String, nullable=False, unique=True, index=True)  # one gateway payment, one order
    pay_method = Column(String, nullable=True)
    pg_provider = Column(String, nullable=True)
    amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="KRW")
    status = Column(String, nullable=False, default=PaymentStatus.PENDING, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)  # only set on COMPLETED
    raw_response = Column(JSONType, nullable=True)  # last gateway lookup
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
