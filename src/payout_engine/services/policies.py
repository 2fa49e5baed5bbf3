"""Pluggable fee-rate and retry-backoff policies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Protocol

from payout_engine.types import AppointmentSession

DEFAULT_PLATFORM_FEE_RATE = Decimal("0.20")


class FeeRatePolicy(Protocol):
    """Decides the platform-fee rate applied to a session's earning."""

    def rate_for(self, session: AppointmentSession) -> Decimal:
        """Fractional fee rate, e.g. Decimal("0.20") for 20%."""
        ...


class RetryBackoffPolicy(Protocol):
    """Decides how long a failed fee charge waits before its next attempt."""

    def delay_after(self, attempt_count: int) -> timedelta:
        """Minimum wait after the `attempt_count`-th failed attempt."""
        ...


def _check_rate(rate: Decimal) -> Decimal:
    rate = Decimal(rate)
    if rate < 0 or rate > 1:
        raise ValueError(f"Fee rate must be between 0 and 1, got {rate}")
    return rate


@dataclass(frozen=True)
class FlatFeeRatePolicy:
    """Same rate for every professional."""

    rate: Decimal = DEFAULT_PLATFORM_FEE_RATE

    def __post_init__(self) -> None:
        _check_rate(self.rate)

    def rate_for(self, session: AppointmentSession) -> Decimal:
        return self.rate


@dataclass(frozen=True)
class ProfessionalOverrideFeeRatePolicy:
    """Per-professional rate carried on the session, else a default."""

    default_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE

    def __post_init__(self) -> None:
        _check_rate(self.default_rate)

    def rate_for(self, session: AppointmentSession) -> Decimal:
        if session.platform_fee_rate is None:
            return self.default_rate
        return _check_rate(session.platform_fee_rate)


@dataclass(frozen=True)
class FixedDailyBackoffPolicy:
    """One retry per daily run; the run's schedule tolerance absorbs start-time jitter."""

    interval: timedelta = timedelta(hours=24)

    def delay_after(self, attempt_count: int) -> timedelta:
        return self.interval


@dataclass(frozen=True)
class LinearBackoffPolicy:
    """Wait grows by `step` with each failed attempt, capped at `maximum`."""

    step: timedelta = timedelta(hours=6)
    maximum: timedelta = timedelta(days=3)

    def delay_after(self, attempt_count: int) -> timedelta:
        return min(self.step * max(attempt_count, 1), self.maximum)
