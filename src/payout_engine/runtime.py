"""Process wiring shared by the HTTP app and the CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine

from payout_engine.config import Settings
from payout_engine.database import create_engine_for, create_session_factory
from payout_engine.gateways import PaymentGateway, build_gateway
from payout_engine.notifications import default_dispatcher
from payout_engine.services.policies import ProfessionalOverrideFeeRatePolicy
from payout_engine.services.scheduled_run import ScheduledPaymentRun
from payout_engine.store.sql import SqlDataStore

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Route log records to stderr at `level`."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@dataclass
class PayoutRuntime:
    """An engine and the payment run built on it."""

    engine: Engine
    runner: ScheduledPaymentRun

    def close(self) -> None:
        """Release the gateway thread pool, gateway and database connections."""
        self.runner.close()
        close_gateway = getattr(self.runner.fee_charges.gateway, "close", None)
        if close_gateway is not None:
            close_gateway()
        self.engine.dispose()


def build_runtime(settings: Settings, gateway: PaymentGateway | None = None) -> PayoutRuntime:
    """Build engine, store, gateway and payment run from settings."""
    config = settings.payout_config()
    engine = create_engine_for(settings.database_url, echo=settings.debug)
    store = SqlDataStore(
        create_session_factory(engine),
        retry_attempts=config.store_retry_attempts,
        retry_pause_seconds=config.store_retry_pause_seconds,
    )
    runner = ScheduledPaymentRun(
        store,
        gateway or build_gateway(settings),
        config=config,
        dispatcher=default_dispatcher(),
        fee_rate_policy=ProfessionalOverrideFeeRatePolicy(settings.default_fee_rate),
    )
    return PayoutRuntime(engine=engine, runner=runner)
