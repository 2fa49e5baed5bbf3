"""Base protocol and types for payment gateway adapters.

All gateway adapters must implement the PaymentGateway protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol


@dataclass(frozen=True)
class CollectResult:
    """Result of asking the gateway to collect a platform fee."""

    success: bool
    reference_id: str | None = None
    reason: str = ""


class PaymentGateway(Protocol):
    """Protocol for payment gateway adapters.

    The fee charge processor collects fees through this protocol without
    knowing processor-specific details. Adapters report a declined or
    failed collection through CollectResult; they raise GatewayError only
    when the processor could not be reached.
    """

    gateway_name: str

    def collect(
        self,
        professional_id: str,
        amount: Decimal,
        *,
        idempotency_key: str | None = None,
    ) -> CollectResult:
        """Collect `amount` from the professional's stored payment method.

        Args:
            professional_id: Professional to charge.
            amount: Positive amount in the platform currency.
            idempotency_key: Key the processor uses to deduplicate retries
                of the same attempt.

        Returns:
            CollectResult with the processor reference on success.
        """
        ...
