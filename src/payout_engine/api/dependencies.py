"""FastAPI dependencies for dependency injection."""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from payout_engine.config import Settings
from payout_engine.services.scheduled_run import ScheduledPaymentRun


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_payment_run(request: Request) -> ScheduledPaymentRun:
    """Payment run built in the application lifespan."""
    runner: ScheduledPaymentRun | None = getattr(request.app.state, "payments", None)
    if runner is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment engine is not initialized",
        )
    return runner


def verify_cron_secret(
    settings: Annotated[Settings, Depends(get_app_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` when a secret is configured."""
    secret = settings.cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    # compare_digest rejects str with non-ASCII characters, so compare bytes
    if authorization is None or not hmac.compare_digest(
        authorization.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


# Type aliases for cleaner dependency injection
PaymentRun = Annotated[ScheduledPaymentRun, Depends(get_payment_run)]
CronAuth = Annotated[None, Depends(verify_cron_secret)]
