"""
TimeCreditService: per-user, per-UTC-day time credits.

Each day a user has one free allowance (settings.free_allowance_seconds) plus any
purchased minutes. Nothing carries over to the next day.

Methods flush but never commit: the calling service owns the transaction so a
ledger debit and the session it pays for commit together.
"""
import logging
from datetime import date, datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ValidationFailure
from app.models.time_credit import TimeCreditLedger

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class TimeCreditService:
    def __init__(self, db: Session):
        self.db = db

    def _get_row(self, user_id: str, day: date) -> TimeCreditLedger | None:
        return (
            self.db.query(TimeCreditLedger)
            .filter(TimeCreditLedger.user_id == user_id, TimeCreditLedger.credit_date == day)
            .one_or_none()
        )

    def _ensure_row(self, user_id: str, day: date) -> TimeCreditLedger:
        """Get or create the (user, day) row. Concurrent creators converge on one row."""
        row = self._get_row(user_id, day)
        if row is not None:
            return row
        try:
            with self.db.begin_nested():
                row = TimeCreditLedger(user_id=user_id, credit_date=day, free_used=False, paid_minutes=0)
                self.db.add(row)
                self.db.flush()
            return row
        except IntegrityError:
            # Lost the insert race; the savepoint was rolled back, the outer transaction survives.
            row = self._get_row(user_id, day)
            if row is None:
                raise
            return row

    def get_today(self, user_id: str, day: date | None = None) -> TimeCreditLedger | None:
        return self._get_row(user_id, day or utc_today())

    def is_free_allowance_used_today(self, user_id: str, day: date | None = None) -> bool:
        row = self._get_row(user_id, day or utc_today())
        return bool(row and row.free_used)

    def consume_free_allowance(self, user_id: str, day: date | None = None) -> bool:
        """
        Flip today's free_used flag. Returns True only for the call that flipped it.
        Conditional UPDATE ... WHERE free_used = false, so two concurrent callers
        cannot both succeed.
        """
        day = day or utc_today()
        row = self._ensure_row(user_id, day)
        result = self.db.execute(
            update(TimeCreditLedger)
            .where(TimeCreditLedger.id == row.id, TimeCreditLedger.free_used.is_(False))
            .values(free_used=True, updated_at=datetime.now(timezone.utc))
        )
        self.db.flush()
        consumed = result.rowcount > 0
        if consumed:
            self.db.refresh(row)
        logger.info(
            "free_allowance_consume",
            extra={"user_id": user_id, "status": "consumed" if consumed else "already_used"},
        )
        return consumed

    def credit_purchased_minutes(self, user_id: str, minutes: int, day: date | None = None) -> TimeCreditLedger:
        if minutes <= 0:
            raise ValidationFailure("minutes must be positive", code="INVALID_UNIT")
        day = day or utc_today()
        row = self._ensure_row(user_id, day)
        self.db.execute(
            update(TimeCreditLedger)
            .where(TimeCreditLedger.id == row.id)
            .values(
                paid_minutes=TimeCreditLedger.paid_minutes + minutes,
                updated_at=datetime.now(timezone.utc),
            )
        )
        self.db.flush()
        self.db.refresh(row)
        logger.info("time_credit_purchased", extra={"user_id": user_id, "minutes": minutes})
        return row

    def available_seconds_today(self, user_id: str, day: date | None = None) -> int:
        """Free component (if unused) plus purchased minutes, in seconds."""
        row = self._get_row(user_id, day or utc_today())
        if row is None:
            return settings.free_allowance_seconds
        free = 0 if row.free_used else settings.free_allowance_seconds
        return free + row.paid_minutes * 60

    def summary(self, user_id: str, day: date | None = None) -> dict:
        day = day or utc_today()
        row = self._get_row(user_id, day)
        return {
            "date": day.isoformat(),
            "free_used": bool(row and row.free_used),
            "free_seconds": settings.free_allowance_seconds,
            "paid_minutes": row.paid_minutes if row else 0,
            "available_seconds": self.available_seconds_today(user_id, day),
        }
