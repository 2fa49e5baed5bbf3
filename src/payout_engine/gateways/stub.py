"""Stub gateway for local development and testing.

Replace with a processor adapter (see HttpGateway) for production.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Union

from payout_engine.gateways.base import CollectResult

# A scripted outcome: a fixed result, an exception to raise, or a callable
# producing the result from the call.
Outcome = Union[CollectResult, Exception, Callable[["CollectCall"], CollectResult]]


@dataclass(frozen=True)
class CollectCall:
    """One recorded call to the stub."""

    professional_id: str
    amount: Decimal
    idempotency_key: str | None


class StubGateway:
    """Stub gateway with scripted outcomes.

    Outcomes queued with `script()` are consumed one per call; once the
    queue is empty every call uses `default`. All calls are recorded.

    Usage:
        gateway = StubGateway()
        gateway.script(CollectResult(success=False, reason="card_declined"))
        gateway.collect("pro-1", Decimal("12.50"))   # declined
        gateway.collect("pro-1", Decimal("12.50"))   # succeeds
    """

    gateway_name = "stub"

    def __init__(
        self,
        default: Outcome | None = None,
        *,
        delay_seconds: float = 0.0,
    ):
        """Initialize stub gateway.

        Args:
            default: Outcome once scripted outcomes run out. Defaults to
                success with a generated reference.
            delay_seconds: Sleep before answering, to exercise timeouts.
        """
        self.default = default
        self.delay_seconds = delay_seconds
        self.calls: list[CollectCall] = []
        self._outcomes: deque[Outcome] = deque()
        self._lock = threading.Lock()

    def script(self, *outcomes: Outcome) -> None:
        """Queue outcomes for the next calls."""
        with self._lock:
            self._outcomes.extend(outcomes)

    def collect(
        self,
        professional_id: str,
        amount: Decimal,
        *,
        idempotency_key: str | None = None,
    ) -> CollectResult:
        """Collect a fee (stub implementation)."""
        call = CollectCall(professional_id, amount, idempotency_key)
        with self._lock:
            self.calls.append(call)
            outcome = self._outcomes.popleft() if self._outcomes else self.default

        if self.delay_seconds:
            time.sleep(self.delay_seconds)

        if outcome is None:
            return CollectResult(
                success=True,
                reference_id=f"STUB-{uuid.uuid4().hex[:12].upper()}",
                reason="stub accepted",
            )
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, CollectResult):
            return outcome
        return outcome(call)

    @property
    def call_count(self) -> int:
        """Number of collect calls received."""
        return len(self.calls)
