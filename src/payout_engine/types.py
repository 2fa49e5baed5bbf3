"""Typed records exchanged between the services and the data store.

All records are:
- Immutable (frozen dataclasses)
- UTC-aware for every instant
- Decimal, cent-quantized for every amount
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from payout_engine.state_machine import (
    ConfirmationStatus,
    EarningStatus,
    FeeChargeStatus,
)

CENTS = Decimal("0.01")


def quantize_money(amount: Decimal) -> Decimal:
    """Round an amount to cents, half up."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AppointmentSession:
    """A booked session, owned by the booking subsystem."""

    session_id: str
    professional_id: str
    start_time: datetime
    end_time: datetime
    completed: bool
    hourly_rate: Decimal | None = None
    platform_fee_rate: Decimal | None = None  # per-professional override

    @property
    def duration_hours(self) -> Decimal:
        """Session length in hours, from whole minutes."""
        minutes = round((self.end_time - self.start_time).total_seconds() / 60)
        return Decimal(minutes) / Decimal(60)


@dataclass(frozen=True)
class Confirmation:
    """Attestation that a session took place."""

    confirmation_id: UUID
    session_id: str
    professional_id: str
    cycle_id: str
    status: ConfirmationStatus
    resolution_deadline: datetime
    created_at: datetime
    resolved_at: datetime | None = None
    dispute_reason: str | None = None
    reminded_days_remaining: int | None = None


@dataclass(frozen=True)
class Earning:
    """Per-session financial record derived from a resolved confirmation."""

    earning_id: UUID
    confirmation_id: UUID
    session_id: str
    professional_id: str
    cycle_id: str
    gross_amount: Decimal
    platform_fee_rate: Decimal
    platform_fee_amount: Decimal
    net_amount: Decimal
    status: EarningStatus
    auto_resolved: bool
    created_at: datetime
    fee_charge_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.gross_amount != self.net_amount + self.platform_fee_amount:
            raise ValueError(
                f"Earning {self.earning_id}: gross {self.gross_amount} != "
                f"net {self.net_amount} + fee {self.platform_fee_amount}"
            )


@dataclass(frozen=True)
class FeeCharge:
    """Platform-fee collection for one professional and one cycle."""

    fee_charge_id: UUID
    professional_id: str
    cycle_id: str
    total_fee_amount: Decimal
    earnings_count: int
    status: FeeChargeStatus
    attempt_count: int
    created_at: datetime
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    next_retry_at: datetime | None = None
    gateway_reference: str | None = None
    charged_at: datetime | None = None
    waived_at: datetime | None = None
    waived_by: str | None = None
    waived_reason: str | None = None


@dataclass(frozen=True)
class CycleEarningsSummary:
    """Totals for one cycle, for reporting."""

    cycle_id: str
    earnings_count: int
    professional_count: int
    total_gross: Decimal
    total_platform_fees: Decimal
    total_net: Decimal
    auto_resolved_count: int
    by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return _serialize(asdict(self))


@dataclass(frozen=True)
class SkippedRecord:
    """A record a batch step could not process."""

    record_type: str
    record_id: str
    reason: str

    def __str__(self) -> str:
        return f"{self.record_type} {self.record_id}: {self.reason}"


@dataclass
class BatchTally:
    """Running count of a batch step.

    Services update it in place as records commit, so a step interrupted
    by an exception still reports what it completed.
    """

    count: int = 0
    skipped: list[SkippedRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class ChargeBatchResult:
    """Outcome of one pass over fee charges, filled in as charges settle.

    `skipped` counts charges another run got to first; `errors` holds
    charges this pass could not settle because the store failed.
    """

    succeeded: int = 0
    failed: int = 0
    retrying: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        """Charges whose gateway outcome was recorded."""
        return self.succeeded + self.failed + self.retrying


@dataclass(frozen=True)
class FeeChargeSummary:
    """Fee charge counts and amounts, optionally for one cycle or professional."""

    total_charges: int
    by_status: dict[str, int]
    total_amount: Decimal
    amount_collected: Decimal
    amount_outstanding: Decimal
    amount_waived: Decimal
    cycle_id: str | None = None
    professional_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return _serialize(asdict(self))


@dataclass(frozen=True)
class PendingFeeTotal:
    """Fees a professional still owes across cycles."""

    professional_id: str
    amount: Decimal
    charge_count: int


@dataclass
class StepOutcome:
    """Outcome of one orchestrator step."""

    name: str
    ok: bool = True
    duration_ms: int = 0
    count: int = 0
    error: str | None = None


@dataclass
class ScheduledRunResult:
    """Statistics for one scheduled payment run.

    Lives only for the duration of the run; callers may persist it.
    """

    started_at: datetime
    as_of: datetime
    trigger_type: str = "manual"
    success: bool = True
    duration_ms: int = 0
    confirmations_created: int = 0
    confirmation_reminders_sent: int = 0
    confirmations_auto_resolved: int = 0
    earnings_created: int = 0
    fee_charges_created: int = 0
    fee_charges_succeeded: int = 0
    fee_charges_failed: int = 0
    fee_charges_retrying: int = 0
    fee_charges_retried: int = 0
    records_skipped: int = 0
    errors: list[str] = field(default_factory=list)
    steps: list[StepOutcome] = field(default_factory=list)

    def record_error(self, step: str, message: str) -> None:
        """Attach an error to a step."""
        self.errors.append(f"{step}: {message}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize as a flat object (steps kept as a list)."""
        return _serialize(asdict(self))


@dataclass
class PaymentHealthReport:
    """Read-only health snapshot of the payment system."""

    healthy: bool
    checked_at: datetime
    database: bool
    current_cycle_id: str
    stuck_processing_charges: int = 0
    overdue_pending_confirmations: int = 0
    pending_fee_charges: int = 0
    retrying_fee_charges: int = 0
    failed_fee_charges: int = 0
    unbilled_late_earnings: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize as a flat object."""
        return _serialize(asdict(self))


def _serialize(obj: Any) -> Any:
    """Recursively convert values for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj
