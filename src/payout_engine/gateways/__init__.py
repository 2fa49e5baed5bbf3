"""Payment gateway adapters.

Usage:
    from payout_engine.gateways import StubGateway, build_gateway

    gateway = build_gateway(settings)
    result = gateway.collect("pro-1", Decimal("12.50"), idempotency_key="...")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from payout_engine.errors import ConfigurationError
from payout_engine.gateways.base import CollectResult, PaymentGateway
from payout_engine.gateways.http import HttpGateway
from payout_engine.gateways.stub import CollectCall, StubGateway

if TYPE_CHECKING:
    from payout_engine.config import Settings

logger = logging.getLogger(__name__)

GATEWAY_KINDS = ("http", "stub")


def build_gateway(settings: Settings) -> PaymentGateway:
    """Gateway selected by GATEWAY, or HttpGateway when only GATEWAY_URL is set.

    The stub approves every collection, so it is used only when asked for
    by name.

    Raises:
        ConfigurationError: If no gateway is configured, GATEWAY names an
            unknown adapter, or GATEWAY=http comes without GATEWAY_URL.
    """
    kind = settings.gateway or ("http" if settings.gateway_url else None)
    if kind is None:
        raise ConfigurationError(
            "No payment gateway configured: set GATEWAY_URL, or GATEWAY=stub for development"
        )
    if kind not in GATEWAY_KINDS:
        raise ConfigurationError(
            f"Unknown gateway {kind!r}; expected one of {', '.join(GATEWAY_KINDS)}"
        )

    if kind == "stub":
        logger.warning("Using the stub gateway: fee charges succeed without collecting money")
        return StubGateway()

    if not settings.gateway_url:
        raise ConfigurationError("GATEWAY=http needs GATEWAY_URL")
    return HttpGateway(
        settings.gateway_url,
        api_key=settings.gateway_api_key,
        timeout_seconds=settings.gateway_timeout_seconds,
    )


__all__ = [
    "CollectCall",
    "CollectResult",
    "GATEWAY_KINDS",
    "HttpGateway",
    "PaymentGateway",
    "StubGateway",
    "build_gateway",
]
