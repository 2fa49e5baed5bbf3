"""API routes."""

from payout_engine.api.routes.cron import router as cron_router
from payout_engine.api.routes.health import router as health_router
from payout_engine.api.routes.payments import router as payments_router

__all__ = ["cron_router", "health_router", "payments_router"]
