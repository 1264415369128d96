"""
SessionExtensionService: purchased time credits and operator session extension.
Session budgets only grow through a verified payment or an admin grant.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session as DBSession

from app.core.errors import AccessDenied, NotFound, PaymentRequired, ValidationFailure
from app.models.payment import Payment
from app.models.payment_detail import PaymentDetail
from app.models.session import Session, SessionMode
from app.services.credits.service import TimeCreditService
from app.services.payments.confirmation import PaymentConfirmationCoordinator
from app.services.payments.ledger import OrderPaymentLedger
from app.services.pricing.catalog import PRODUCT_CREDIT
from app.services.pricing.service import quote_credit, unit_minutes
from app.services.sessions.service import SessionService
from app.utils.metrics import credit_purchases_total

logger = logging.getLogger(__name__)

MODE_CREDIT = "credit"


@dataclass
class CreditPurchase:
    unit: str
    minutes: int
    available_seconds_today: int
    extended: bool
    session: Session | None = None

    def to_dict(self) -> dict:
        return {
            "unit": self.unit,
            "minutes": self.minutes,
            "available_seconds_today": self.available_seconds_today,
            "extended": self.extended,
            "session_id": self.session.id if self.session else None,
            "session_remaining_seconds": self.session.remaining_seconds if self.session else None,
        }


class SessionExtensionService:
    def __init__(self, db: DBSession, coordinator: PaymentConfirmationCoordinator | None = None):
        self.db = db
        self.coordinator = coordinator
        self.credits = TimeCreditService(db)
        self.sessions = SessionService(db)
        self.ledger = OrderPaymentLedger(db)

    def _extendable(self, session_id: str | None, user_id: str) -> Session | None:
        """The session to extend, or None when the credit should only land on the ledger."""
        if not session_id:
            return None
        session = self.sessions.get_session(session_id)
        if session is None:
            return None
        if session.user_id != user_id:
            raise AccessDenied("session belongs to another user", code="SESSION_ACCESS_DENIED")
        if session.mode != SessionMode.INTERACTIVE or not self.sessions.is_live(session):
            return None
        return session

    def _verify_payment(self, payment_id: str, user_id: str, unit: str, gateway_payment_id: str | None) -> Payment:
        payment = self.ledger.find_payment(payment_id)
        if payment is None:
            raise NotFound("payment not found", code="PAYMENT_NOT_FOUND")
        if payment.user_id != user_id:
            raise AccessDenied("payment belongs to another user", code="PAYMENT_ACCESS_DENIED")
        if self.coordinator is None:
            raise ValidationFailure("payment verification unavailable", code="PAYMENT_UNVERIFIED")
        payment = self.coordinator.require_completed(payment, user_id, gateway_payment_id)
        payment = self.db.query(Payment).filter(Payment.id == payment.id).with_for_update().one()
        used = self.db.query(PaymentDetail).filter(PaymentDetail.payment_id == payment.id).first()
        if used is not None:
            raise ValidationFailure("payment was already used", code="PAYMENT_ALREADY_USED")
        order, _ = self.ledger.pair(payment)
        meta = order.meta or {}
        if meta.get("product_type") and meta["product_type"] != PRODUCT_CREDIT:
            raise ValidationFailure("payment was made for another product", code="PRODUCT_MISMATCH")
        if meta.get("unit") and meta["unit"] != unit:
            raise ValidationFailure("payment was made for another unit", code="INVALID_UNIT")
        return payment

    def purchase_credit(
        self,
        user_id: str,
        unit: str,
        payment_id: str | None,
        session_id: str | None = None,
        gateway_payment_id: str | None = None,
    ) -> CreditPurchase:
        """
        Credit the ledger with the minutes a COMPLETED, unused payment bought and, when an
        active session owned by the user is given, add the same time to it. One transaction.
        """
        minutes = unit_minutes(unit)
        if not payment_id:
            raise PaymentRequired(
                "a confirmed payment is required", detail={"quote": quote_credit(unit).model_dump()}
            )
        payment = self._verify_payment(payment_id, user_id, unit, gateway_payment_id)
        session = self._extendable(session_id, user_id)

        self.credits.credit_purchased_minutes(user_id, minutes)
        if session is not None:
            session = self.sessions.add_time(session, minutes * 60)
        self.db.add(
            PaymentDetail(
                payment_id=payment.id,
                session_id=session.id if session else None,
                session_mode=MODE_CREDIT,
                category=session.category if session else None,
            )
        )
        self.db.commit()

        extended = session is not None
        credit_purchases_total.labels(unit=unit, extended=str(extended).lower()).inc()
        logger.info(
            "credit_purchase_applied",
            extra={
                "user_id": user_id,
                "session_id": session.id if session else None,
                "payment_id": payment.id,
                "minutes": minutes,
            },
        )
        return CreditPurchase(
            unit=unit,
            minutes=minutes,
            available_seconds_today=self.credits.available_seconds_today(user_id),
            extended=extended,
            session=session,
        )

    def extend_session(self, session_id: str, seconds: int) -> Session:
        """Operator grant of extra time, outside the purchase flow."""
        session = self.sessions.get_session(session_id)
        if session is None:
            raise NotFound("session not found", code="SESSION_NOT_FOUND")
        if not self.sessions.is_live(session):
            raise ValidationFailure("session is no longer active", code="SESSION_EXPIRED")
        session = self.sessions.add_time(session, seconds)
        self.db.commit()
        logger.info(
            "session_extended_by_operator",
            extra={"session_id": session.id, "user_id": session.user_id, "seconds": seconds},
        )
        return session
