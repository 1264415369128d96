"""
SessionFactory: the only place sessions are created.

A session exists only with proof of funding:
- one-shot (document) sessions need a COMPLETED payment;
- interactive (chat) sessions need either a COMPLETED payment for a fixed
  duration or today's unused free allowance, never both.

Each creation commits the session, its PaymentDetail link and the order
metadata back-reference (or the free-allowance debit) in one transaction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session as DBSession

from app.core.config import settings
from app.core.errors import AccessDenied, NotFound, PaymentRequired, ValidationFailure
from app.models.payment import Payment
from app.models.payment_detail import PaymentDetail
from app.models.session import Session, SessionMode, SessionStatus
from app.services.credits.service import TimeCreditService
from app.services.payments.confirmation import PaymentConfirmationCoordinator
from app.services.payments.ledger import OrderPaymentLedger
from app.services.pricing.catalog import FORM_TYPES, PRODUCT_CHAT, PRODUCT_DOCUMENT
from app.services.pricing.service import list_category_quotes, quote_document, validate_category, validate_duration
from app.services.result_tokens.service import ResultTokenService
from app.services.sessions.service import SessionService
from app.utils.metrics import sessions_created_total

logger = logging.getLogger(__name__)

FUNDING_PAYMENT = "payment"
FUNDING_FREE = "free_allowance"


@dataclass
class SessionCreation:
    session: Session
    created: bool
    result_token: str
    funding_source: str

    def to_dict(self) -> dict:
        return {
            "session": SessionService.to_dict(self.session),
            "created": self.created,
            "result_token": self.result_token,
            "funding_source": self.funding_source,
        }


class SessionFactory:
    def __init__(
        self,
        db: DBSession,
        coordinator: PaymentConfirmationCoordinator,
        tokens: ResultTokenService | None = None,
    ):
        self.db = db
        self.coordinator = coordinator
        self.ledger = OrderPaymentLedger(db)
        self.credits = TimeCreditService(db)
        self.sessions = SessionService(db)
        self.tokens = tokens or ResultTokenService()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _form_type(form_type: str | None) -> str:
        normalized = (form_type or "ASK").upper()
        if normalized not in FORM_TYPES:
            raise ValidationFailure(f"unknown form type: {form_type}", code="INVALID_FORM_TYPE")
        return normalized

    def _load_owned_payment(self, payment_id: str, user_id: str) -> Payment:
        payment = self.ledger.find_payment(payment_id)
        if payment is None:
            raise NotFound("payment not found", code="PAYMENT_NOT_FOUND")
        if payment.user_id != user_id:
            raise AccessDenied("payment belongs to another user", code="PAYMENT_ACCESS_DENIED")
        return payment

    def _linked_session(self, payment_id: str) -> Session | None:
        detail = (
            self.db.query(PaymentDetail)
            .filter(PaymentDetail.payment_id == payment_id, PaymentDetail.session_id.isnot(None))
            .order_by(PaymentDetail.created_at)
            .first()
        )
        if detail is None:
            return None
        return self.sessions.get_session(detail.session_id)

    def _lock_payment(self, payment: Payment) -> Payment:
        return self.db.query(Payment).filter(Payment.id == payment.id).with_for_update().one()

    def _check_product(self, order_meta: dict, product_type: str, category: str) -> None:
        ordered_type = order_meta.get("product_type")
        if ordered_type and ordered_type != product_type:
            raise ValidationFailure("payment was made for another product", code="PRODUCT_MISMATCH")
        ordered_category = order_meta.get("category")
        if ordered_category and ordered_category != category:
            raise ValidationFailure("payment was made for another category", code="CATEGORY_MISMATCH")

    def _link(self, payment: Payment, session: Session) -> None:
        self.db.add(
            PaymentDetail(
                payment_id=payment.id,
                session_id=session.id,
                session_mode=session.mode,
                category=session.category,
                expired_at=session.expires_at,
            )
        )
        self.ledger.enrich_order_metadata(payment.order_id, session_id=session.id)

    def _reuse_one_shot(self, existing: Session, category: str) -> SessionCreation:
        """Replay of a one-shot creation; the linked session must be that same product."""
        if existing.mode != SessionMode.ONE_SHOT:
            raise ValidationFailure("payment was made for another product", code="PRODUCT_MISMATCH")
        if existing.category != category:
            raise ValidationFailure("payment was made for another category", code="CATEGORY_MISMATCH")
        return self._result(existing, created=False)

    def _result(self, session: Session, created: bool) -> SessionCreation:
        return SessionCreation(
            session=session,
            created=created,
            result_token=self.tokens.sign_for_session(session),
            funding_source=session.funding_source,
        )

    # ------------------------------------------------------------------
    # One-shot
    # ------------------------------------------------------------------

    def create_one_shot_session(
        self,
        user_id: str,
        category: str,
        user_input: str | None,
        user_data: dict | None,
        payment_id: str | None,
        gateway_payment_id: str | None = None,
        form_type: str | None = None,
    ) -> SessionCreation:
        category = validate_category(category)
        form_type = self._form_type(form_type)
        if not payment_id:
            raise PaymentRequired(
                "a confirmed payment is required",
                detail={"quote": quote_document(category).model_dump()},
            )

        payment = self._load_owned_payment(payment_id, user_id)
        existing = self._linked_session(payment.id)
        if existing is not None:
            return self._reuse_one_shot(existing, category)

        payment = self.coordinator.require_completed(payment, user_id, gateway_payment_id)
        payment = self._lock_payment(payment)
        existing = self._linked_session(payment.id)
        if existing is not None:
            self.db.commit()
            return self._reuse_one_shot(existing, category)

        order, _ = self.ledger.pair(payment)
        self._check_product(order.meta or {}, PRODUCT_DOCUMENT, category)

        session = Session(
            user_id=user_id,
            category=category,
            form_type=form_type,
            mode=SessionMode.ONE_SHOT,
            remaining_seconds=0,
            is_active=True,
            status=SessionStatus.CREATED,
            funding_source=FUNDING_PAYMENT,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=settings.one_shot_session_ttl_seconds),
            user_input=user_input,
            user_data=user_data,
        )
        self.db.add(session)
        self.db.flush()
        self._link(payment, session)
        self.db.commit()

        sessions_created_total.labels(mode=SessionMode.ONE_SHOT, source=FUNDING_PAYMENT).inc()
        logger.info(
            "session_created",
            extra={"session_id": session.id, "user_id": user_id, "payment_id": payment.id, "mode": session.mode},
        )
        return self._result(session, created=True)

    # ------------------------------------------------------------------
    # Interactive
    # ------------------------------------------------------------------

    def create_interactive_session(
        self,
        user_id: str,
        category: str,
        form_type: str | None = None,
        duration_minutes: int | None = None,
        payment_id: str | None = None,
        gateway_payment_id: str | None = None,
        use_free_allowance: bool = False,
        user_input: str | None = None,
        user_data: dict | None = None,
    ) -> SessionCreation:
        category = validate_category(category)
        form_type = self._form_type(form_type)
        if payment_id and use_free_allowance:
            raise ValidationFailure(
                "use either a payment or the free allowance, not both", code="AMBIGUOUS_FUNDING"
            )
        if payment_id:
            duration_minutes = validate_duration(duration_minutes)

        existing = self.sessions.get_active_for(user_id, category, SessionMode.INTERACTIVE)
        if existing is not None:
            self.db.commit()
            return self._result(existing, created=False)
        # persist any stale sessions closed during the lookup
        self.db.commit()

        if payment_id:
            return self._create_paid_interactive(
                user_id, category, form_type, duration_minutes, payment_id, gateway_payment_id,
                user_input, user_data,
            )
        if use_free_allowance:
            return self._create_free_interactive(user_id, category, form_type, user_input, user_data)
        raise PaymentRequired(
            "a payment or the daily free allowance is required",
            detail={
                "quotes": [q.model_dump() for q in list_category_quotes(category)],
                "free_allowance_available": not self.credits.is_free_allowance_used_today(user_id),
            },
        )

    def _new_interactive(self, user_id, category, form_type, seconds, funding, user_input, user_data) -> Session:
        session = Session(
            user_id=user_id,
            category=category,
            form_type=form_type,
            mode=SessionMode.INTERACTIVE,
            remaining_seconds=seconds,
            is_active=True,
            status=SessionStatus.CREATED,
            funding_source=funding,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=seconds),
            user_input=user_input,
            user_data=user_data,
        )
        self.db.add(session)
        self.db.flush()
        return session

    def _create_paid_interactive(
        self, user_id, category, form_type, duration_minutes, payment_id, gateway_payment_id,
        user_input, user_data,
    ) -> SessionCreation:
        payment = self._load_owned_payment(payment_id, user_id)
        if self._linked_session(payment.id) is not None:
            raise ValidationFailure("payment was already used", code="PAYMENT_ALREADY_USED")

        payment = self.coordinator.require_completed(payment, user_id, gateway_payment_id)
        payment = self._lock_payment(payment)
        if self._linked_session(payment.id) is not None:
            self.db.rollback()
            raise ValidationFailure("payment was already used", code="PAYMENT_ALREADY_USED")

        order, _ = self.ledger.pair(payment)
        meta = order.meta or {}
        self._check_product(meta, PRODUCT_CHAT, category)
        ordered_minutes = meta.get("duration_minutes")
        if ordered_minutes is not None and int(ordered_minutes) != duration_minutes:
            self.db.rollback()
            raise ValidationFailure(
                "duration does not match the purchased duration",
                code="DURATION_MISMATCH",
                detail={"ordered": ordered_minutes, "requested": duration_minutes},
            )

        session = self._new_interactive(
            user_id, category, form_type, duration_minutes * 60, FUNDING_PAYMENT, user_input, user_data
        )
        self._link(payment, session)
        self.db.commit()

        sessions_created_total.labels(mode=SessionMode.INTERACTIVE, source=FUNDING_PAYMENT).inc()
        logger.info(
            "session_created",
            extra={
                "session_id": session.id,
                "user_id": user_id,
                "payment_id": payment.id,
                "mode": session.mode,
                "seconds": session.remaining_seconds,
            },
        )
        return self._result(session, created=True)

    def _create_free_interactive(self, user_id, category, form_type, user_input, user_data) -> SessionCreation:
        if not self.credits.consume_free_allowance(user_id):
            self.db.rollback()
            raise ValidationFailure("today's free allowance was already used", code="FREE_ALLOWANCE_USED")

        # Budget is fixed by the allowance; any requested duration is ignored
        session = self._new_interactive(
            user_id, category, form_type, settings.free_allowance_seconds, FUNDING_FREE, user_input, user_data
        )
        self.db.commit()

        sessions_created_total.labels(mode=SessionMode.INTERACTIVE, source=FUNDING_FREE).inc()
        logger.info(
            "session_created",
            extra={
                "session_id": session.id,
                "user_id": user_id,
                "mode": session.mode,
                "seconds": session.remaining_seconds,
                "source": FUNDING_FREE,
            },
        )
        return self._result(session, created=True)
