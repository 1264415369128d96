"""Import all models so Base.metadata knows every table."""
from app.models.artifact import Artifact
from app.models.interaction_log import InteractionLog
from app.models.order import Order, OrderStatus
from app.models.payment import Payment, PaymentStatus
from app.models.payment_detail import PaymentDetail
from app.models.session import Session, SessionMode, SessionStatus
from app.models.time_credit import TimeCreditLedger

__all__ = [
    "Artifact",
    "InteractionLog",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "PaymentDetail",
    "Session",
    "SessionMode",
    "SessionStatus",
    "TimeCreditLedger",
]
