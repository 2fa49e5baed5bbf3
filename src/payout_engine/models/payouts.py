"""Confirmation, earning and fee charge models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.models.base import Base, TimestampMixin


class ConfirmationRow(Base, TimestampMixin):
    """One confirmation per completed appointment session."""

    __tablename__ = "session_confirmation"

    confirmation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("appointment_session.session_id", ondelete="RESTRICT"),
        nullable=False,
    )
    professional_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cycle_id: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    resolution_deadline: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reminded_days_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", name="session_confirmation_one_per_session"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'disputed', 'auto_resolved')",
            name="session_confirmation_status_check",
        ),
        Index("ix_session_confirmation_status_deadline", "status", "resolution_deadline"),
    )


class EarningRow(Base, TimestampMixin):
    """Per-session earning, created once per resolved confirmation."""

    __tablename__ = "earning"

    earning_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    confirmation_id: Mapped[UUID] = mapped_column(
        ForeignKey("session_confirmation.confirmation_id", ondelete="RESTRICT"),
        nullable=False,
    )
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    professional_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cycle_id: Mapped[str] = mapped_column(String(10), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    platform_fee_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    platform_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending_charge")
    auto_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fee_charge_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("fee_charge.fee_charge_id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("confirmation_id", name="earning_one_per_confirmation"),
        CheckConstraint(
            "status IN ('pending_charge', 'charged', 'failed', 'waived')",
            name="earning_status_check",
        ),
        CheckConstraint("platform_fee_amount >= 0", name="earning_fee_nonnegative_check"),
        Index("ix_earning_cycle_professional", "cycle_id", "professional_id"),
        Index("ix_earning_status_fee_charge", "status", "fee_charge_id"),
    )


class FeeChargeRow(Base, TimestampMixin):
    """Aggregated platform-fee charge for one professional and cycle."""

    __tablename__ = "fee_charge"

    fee_charge_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    professional_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cycle_id: Mapped[str] = mapped_column(String(10), nullable=False)
    total_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    earnings_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(nullable=True)
    gateway_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    charged_at: Mapped[datetime | None] = mapped_column(nullable=True)
    waived_at: Mapped[datetime | None] = mapped_column(nullable=True)
    waived_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    waived_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "professional_id", "cycle_id", name="fee_charge_one_per_professional_cycle"
        ),
        CheckConstraint(
            "status IN ('pending', 'processing', 'succeeded', 'failed', 'retrying', 'waived')",
            name="fee_charge_status_check",
        ),
        CheckConstraint("attempt_count >= 0", name="fee_charge_attempts_check"),
        Index("ix_fee_charge_status_next_retry", "status", "next_retry_at"),
        Index("ix_fee_charge_professional", "professional_id", "created_at"),
    )
