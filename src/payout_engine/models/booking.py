"""Booking-side tables read by the payout engine.

The booking subsystem owns these rows; the payout engine never writes them
outside of test fixtures.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.models.base import Base, TimestampMixin


class AppointmentSessionRow(Base, TimestampMixin):
    """A booked appointment session."""

    __tablename__ = "appointment_session"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    professional_id: Mapped[str] = mapped_column(String(64), nullable=False)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    platform_fee_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "end_time >= start_time",
            name="appointment_session_times_check",
        ),
        CheckConstraint(
            "platform_fee_rate IS NULL OR (platform_fee_rate >= 0 AND platform_fee_rate <= 1)",
            name="appointment_session_fee_rate_check",
        ),
        Index("ix_appointment_session_completed_end", "completed", "end_time"),
    )
