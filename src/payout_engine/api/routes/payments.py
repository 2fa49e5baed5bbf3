"""Payment cycle, earnings, confirmation and fee charge endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status

from payout_engine.api.dependencies import PaymentRun
from payout_engine.api.schemas import (
    ConfirmationResponse,
    CycleEarningsResponse,
    CycleResponse,
    CycleSummaryResponse,
    DisputeRequest,
    EarningResponse,
    ErrorResponse,
    FeeChargeListResponse,
    FeeChargeResponse,
    FeeChargeSummaryResponse,
    PendingFeeTotalResponse,
    WaiveRequest,
)
from payout_engine.errors import InvalidTransitionError, RecordNotFoundError
from payout_engine.services.cycle_calculator import (
    PaymentCycle,
    cycle_containing,
    cycle_for_id,
)
from payout_engine.state_machine import FeeChargeStatus

router = APIRouter(prefix="/payments", tags=["payments"])

CycleId = Annotated[str, Path(pattern=r"^\d{4}-\d{2}-\d{2}$")]


def _cycle_or_400(cycle_id: str) -> PaymentCycle:
    try:
        return cycle_for_id(cycle_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ============================================================================
# Cycles
# ============================================================================


@router.get("/cycles/current", response_model=CycleResponse)
def get_current_cycle(runner: PaymentRun) -> CycleResponse:
    """Cycle containing the current instant."""
    now = runner.clock()
    cycle = cycle_containing(now)
    return CycleResponse(
        cycle_id=cycle.cycle_id,
        start=cycle.start,
        end=cycle.end,
        cutoff=cycle.cutoff,
        status=cycle.status(now, runner.config.closing_grace),
    )


@router.get(
    "/cycles/{cycle_id}/earnings",
    response_model=CycleEarningsResponse,
    responses={400: {"model": ErrorResponse}},
)
def list_cycle_earnings(
    runner: PaymentRun,
    cycle_id: CycleId,
    professional_id: Annotated[str | None, Query(max_length=64)] = None,
) -> CycleEarningsResponse:
    """Earnings of a cycle, for one professional or all of them."""
    _cycle_or_400(cycle_id)
    earnings = runner.earnings.earnings_for_cycle(cycle_id, professional_id)
    return CycleEarningsResponse(
        cycle_id=cycle_id,
        professional_id=professional_id,
        items=[EarningResponse.model_validate(e) for e in earnings],
        total=len(earnings),
    )


@router.get(
    "/cycles/{cycle_id}/summary",
    response_model=CycleSummaryResponse,
    responses={400: {"model": ErrorResponse}},
)
def get_cycle_summary(runner: PaymentRun, cycle_id: CycleId) -> CycleSummaryResponse:
    """Totals for a cycle."""
    _cycle_or_400(cycle_id)
    return CycleSummaryResponse.model_validate(runner.earnings.summarize_cycle(cycle_id))


# ============================================================================
# Confirmations
# ============================================================================


@router.post(
    "/confirmations/{confirmation_id}/confirm",
    response_model=ConfirmationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def confirm_session(
    runner: PaymentRun,
    confirmation_id: Annotated[UUID, Path()],
) -> ConfirmationResponse:
    """Professional confirms a completed session."""
    try:
        confirmation = runner.confirmations.confirm(confirmation_id, runner.clock())
    except RecordNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ConfirmationResponse.model_validate(confirmation)


@router.post(
    "/confirmations/{confirmation_id}/dispute",
    response_model=ConfirmationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def dispute_session(
    runner: PaymentRun,
    confirmation_id: Annotated[UUID, Path()],
    payload: DisputeRequest,
) -> ConfirmationResponse:
    """Professional disputes a session."""
    try:
        confirmation = runner.confirmations.dispute(
            confirmation_id, payload.reason, runner.clock()
        )
    except RecordNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ConfirmationResponse.model_validate(confirmation)


# ============================================================================
# Fee charges
# ============================================================================


@router.get(
    "/fee-charges/summary",
    response_model=FeeChargeSummaryResponse,
    responses={400: {"model": ErrorResponse}},
)
def get_fee_charge_summary(
    runner: PaymentRun,
    cycle_id: Annotated[str | None, Query(pattern=r"^\d{4}-\d{2}-\d{2}$")] = None,
) -> FeeChargeSummaryResponse:
    """Fee charge counts and amounts, for one cycle or all of them."""
    if cycle_id is not None:
        _cycle_or_400(cycle_id)
    summary = runner.fee_charges.fee_charge_summary(cycle_id=cycle_id)
    return FeeChargeSummaryResponse.model_validate(summary)


@router.get(
    "/fee-charges/{fee_charge_id}",
    response_model=FeeChargeResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_fee_charge(
    runner: PaymentRun,
    fee_charge_id: Annotated[UUID, Path()],
) -> FeeChargeResponse:
    """One fee charge."""
    try:
        charge = runner.fee_charges.get_fee_charge(fee_charge_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return FeeChargeResponse.model_validate(charge)


@router.post(
    "/fee-charges/{fee_charge_id}/waive",
    response_model=FeeChargeResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def waive_fee_charge(
    runner: PaymentRun,
    fee_charge_id: Annotated[UUID, Path()],
    payload: WaiveRequest,
) -> FeeChargeResponse:
    """Operator waives an unpaid fee charge."""
    try:
        charge = runner.fee_charges.waive_fee_charge(
            fee_charge_id,
            waived_by=payload.waived_by,
            reason=payload.reason,
            at=runner.clock(),
        )
    except RecordNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return FeeChargeResponse.model_validate(charge)


@router.get("/professionals/{professional_id}/fee-charges", response_model=FeeChargeListResponse)
def list_professional_fee_charges(
    runner: PaymentRun,
    professional_id: Annotated[str, Path(max_length=64)],
    status_filter: Annotated[FeeChargeStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> FeeChargeListResponse:
    """A professional's fee charges, newest first."""
    charges = runner.fee_charges.fee_charges_for_professional(
        professional_id, status=status_filter, limit=limit, offset=offset
    )
    return FeeChargeListResponse(
        professional_id=professional_id,
        items=[FeeChargeResponse.model_validate(c) for c in charges],
        limit=limit,
        offset=offset,
    )


@router.get(
    "/professionals/{professional_id}/pending-fees",
    response_model=PendingFeeTotalResponse,
)
def get_pending_fees(
    runner: PaymentRun,
    professional_id: Annotated[str, Path(max_length=64)],
) -> PendingFeeTotalResponse:
    """Fees the professional still owes across cycles."""
    return PendingFeeTotalResponse.model_validate(
        runner.fee_charges.pending_fee_total(professional_id)
    )
