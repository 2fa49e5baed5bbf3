"""SQLAlchemy ORM models."""

from payout_engine.models.base import Base, TimestampMixin, UtcDateTime, utcnow
from payout_engine.models.booking import AppointmentSessionRow
from payout_engine.models.payouts import ConfirmationRow, EarningRow, FeeChargeRow

__all__ = [
    "Base",
    "TimestampMixin",
    "UtcDateTime",
    "utcnow",
    "AppointmentSessionRow",
    "ConfirmationRow",
    "EarningRow",
    "FeeChargeRow",
]
