"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from payout_engine.api.routes import cron_router, health_router, payments_router
from payout_engine.config import Settings, get_settings
from payout_engine.runtime import build_runtime, configure_logging
from payout_engine.services.scheduled_run import ScheduledPaymentRun

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the payment engine on startup unless one was injected."""
    runtime = None
    if getattr(app.state, "payments", None) is None:
        runtime = build_runtime(app.state.settings)
        app.state.payments = runtime.runner
    yield
    if runtime is not None:
        runtime.close()
        app.state.payments = None


def create_app(
    settings: Settings | None = None,
    payments: ScheduledPaymentRun | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Defaults to settings from the environment.
        payments: Prebuilt payment run; when omitted one is built from
            `settings` for the lifetime of the app.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Payout Engine API",
        description="Weekly payment cycles, earnings and platform-fee collection",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.payments = payments

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(cron_router, prefix="/api")
    app.include_router(payments_router, prefix="/api/v1")

    return app


def create_default_app() -> FastAPI:
    """App built from environment settings, for uvicorn's factory mode."""
    settings = get_settings()
    configure_logging(settings.log_level)
    return create_app(settings)
