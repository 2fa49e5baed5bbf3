"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from payout_engine.state_machine import (
    ConfirmationStatus,
    CycleStatus,
    EarningStatus,
    FeeChargeStatus,
)


# ============================================================================
# Cron trigger
# ============================================================================


class CronTriggerRequest(BaseModel):
    """Optional body of a POST trigger."""

    trigger_type: str = Field(default="manual", min_length=1, max_length=50)


class StepOutcomeResponse(BaseModel):
    """Outcome of one run step."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    ok: bool
    duration_ms: int
    count: int
    error: str | None = None


class ScheduledRunResponse(BaseModel):
    """Statistics of one scheduled payment run."""

    model_config = ConfigDict(from_attributes=True)

    started_at: datetime
    as_of: datetime
    trigger_type: str
    success: bool
    duration_ms: int
    confirmations_created: int
    confirmation_reminders_sent: int
    confirmations_auto_resolved: int
    earnings_created: int
    fee_charges_created: int
    fee_charges_succeeded: int
    fee_charges_failed: int
    fee_charges_retrying: int
    fee_charges_retried: int
    records_skipped: int
    errors: list[str]
    steps: list[StepOutcomeResponse]


class HealthReportResponse(BaseModel):
    """Payment system health report."""

    model_config = ConfigDict(from_attributes=True)

    healthy: bool
    checked_at: datetime
    database: bool
    current_cycle_id: str
    stuck_processing_charges: int
    overdue_pending_confirmations: int
    pending_fee_charges: int
    retrying_fee_charges: int
    failed_fee_charges: int
    unbilled_late_earnings: int
    warnings: list[str]


# ============================================================================
# Cycles and earnings
# ============================================================================


class CycleResponse(BaseModel):
    """A payment cycle and its status at request time."""

    cycle_id: str
    start: datetime
    end: datetime
    cutoff: datetime
    status: CycleStatus


class EarningResponse(BaseModel):
    """Schema for earning response."""

    model_config = ConfigDict(from_attributes=True)

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
    fee_charge_id: UUID | None = None
    created_at: datetime


class CycleEarningsResponse(BaseModel):
    """Earnings of one cycle."""

    cycle_id: str
    professional_id: str | None = None
    items: list[EarningResponse]
    total: int


class CycleSummaryResponse(BaseModel):
    """Totals for one cycle."""

    model_config = ConfigDict(from_attributes=True)

    cycle_id: str
    earnings_count: int
    professional_count: int
    total_gross: Decimal
    total_platform_fees: Decimal
    total_net: Decimal
    auto_resolved_count: int
    by_status: dict[str, int]


# ============================================================================
# Confirmations
# ============================================================================


class DisputeRequest(BaseModel):
    """Schema for disputing a session."""

    reason: str = Field(..., min_length=1, max_length=2000)


class ConfirmationResponse(BaseModel):
    """Schema for confirmation response."""

    model_config = ConfigDict(from_attributes=True)

    confirmation_id: UUID
    session_id: str
    professional_id: str
    cycle_id: str
    status: ConfirmationStatus
    resolution_deadline: datetime
    resolved_at: datetime | None = None
    dispute_reason: str | None = None
    created_at: datetime


# ============================================================================
# Fee charges
# ============================================================================


class FeeChargeResponse(BaseModel):
    """Schema for fee charge response."""

    model_config = ConfigDict(from_attributes=True)

    fee_charge_id: UUID
    professional_id: str
    cycle_id: str
    total_fee_amount: Decimal
    earnings_count: int
    status: FeeChargeStatus
    attempt_count: int
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    next_retry_at: datetime | None = None
    gateway_reference: str | None = None
    charged_at: datetime | None = None
    waived_at: datetime | None = None
    waived_by: str | None = None
    waived_reason: str | None = None
    created_at: datetime


class FeeChargeListResponse(BaseModel):
    """A page of a professional's fee charges."""

    professional_id: str
    items: list[FeeChargeResponse]
    limit: int
    offset: int


class FeeChargeSummaryResponse(BaseModel):
    """Fee charge counts and amounts."""

    model_config = ConfigDict(from_attributes=True)

    cycle_id: str | None = None
    professional_id: str | None = None
    total_charges: int
    by_status: dict[str, int]
    total_amount: Decimal
    amount_collected: Decimal
    amount_outstanding: Decimal
    amount_waived: Decimal


class PendingFeeTotalResponse(BaseModel):
    """Fees a professional still owes."""

    model_config = ConfigDict(from_attributes=True)

    professional_id: str
    amount: Decimal
    charge_count: int


class WaiveRequest(BaseModel):
    """Schema for waiving a fee charge."""

    waived_by: str = Field(..., min_length=1, max_length=64)
    reason: str = Field(..., min_length=1, max_length=2000)


# ============================================================================
# Common schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    errors: list[dict[str, Any]] | None = None
