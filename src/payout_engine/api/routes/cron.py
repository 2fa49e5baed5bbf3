"""Scheduled payment processing trigger."""

from typing import Annotated

from fastapi import APIRouter, Body, Header, HTTPException, Query, status

from payout_engine.api.dependencies import CronAuth, PaymentRun
from payout_engine.api.schemas import (
    CronTriggerRequest,
    ErrorResponse,
    HealthReportResponse,
    ScheduledRunResponse,
)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.get(
    "/process-payments",
    response_model=ScheduledRunResponse | HealthReportResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
def process_payments_get(
    runner: PaymentRun,
    _auth: CronAuth,
    action: Annotated[str | None, Query()] = None,
    x_trigger_type: Annotated[str | None, Header()] = None,
) -> ScheduledRunResponse | HealthReportResponse:
    """Run the scheduled payment pass, or report health with `?action=health`."""
    if action == "health":
        return HealthReportResponse.model_validate(runner.check_payment_system_health())
    if action is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown action: {action}",
        )

    result = runner.run_scheduled_payment_processing(trigger_type=x_trigger_type or "manual")
    return ScheduledRunResponse.model_validate(result)


@router.post(
    "/process-payments",
    response_model=ScheduledRunResponse,
    responses={401: {"model": ErrorResponse}},
)
def process_payments_post(
    runner: PaymentRun,
    _auth: CronAuth,
    payload: Annotated[CronTriggerRequest | None, Body()] = None,
) -> ScheduledRunResponse:
    """Run the scheduled payment pass."""
    trigger_type = payload.trigger_type if payload is not None else "manual"
    result = runner.run_scheduled_payment_processing(trigger_type=trigger_type)
    return ScheduledRunResponse.model_validate(result)
