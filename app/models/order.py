"""
Order: what the user is buying. Exactly one Payment per Order (payments.order_id is unique).
metadata carries the product description (product_type, category, duration) and is enriched
with session_id / artifact_id after a session is created.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.db.base import Base, JSONType


class OrderStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    USER_CANCELLED = "USER_CANCELLED"
    REFUNDED = "REFUNDED"

    ALL = (PENDING, PAID, FAILED, CANCELLED, USER_CANCELLED, REFUNDED)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    merchant_uid = Column(String, unique=True, nullable=False)  # gateway-facing reference
    order_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="KRW")
    status = Column(String, nullable=False, default=OrderStatus.PENDING, index=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
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
