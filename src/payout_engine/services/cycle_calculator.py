"""Weekly payment cycle boundaries.

A cycle is the half-open UTC week [Monday 00:00, next Monday 00:00).
Its cutoff is the following Monday at 15:00 UTC; confirmations for the
cycle are final once the cutoff has passed.

Everything here is pure: no clock reads, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator

from payout_engine.state_machine import CycleStatus

CYCLE_LENGTH = timedelta(days=7)
CUTOFF_OFFSET = timedelta(days=7, hours=15)


@dataclass(frozen=True)
class PaymentCycle:
    """One settlement week."""

    start: datetime
    next_start: datetime
    cutoff: datetime

    @property
    def cycle_id(self) -> str:
        """Stable identifier: ISO date of the Monday the cycle starts on."""
        return self.start.date().isoformat()

    @property
    def end(self) -> datetime:
        """Last representable instant of the cycle (Sunday 23:59:59.999999)."""
        return self.next_start - timedelta(microseconds=1)

    def contains(self, instant: datetime) -> bool:
        """Check whether `instant` falls inside [start, next_start)."""
        instant = _as_utc(instant)
        return self.start <= instant < self.next_start

    def status(self, now: datetime, closing_grace: timedelta = timedelta(days=7)) -> CycleStatus:
        """Derived status of the cycle at `now`."""
        now = _as_utc(now)
        if now < self.cutoff:
            return CycleStatus.OPEN
        if now < self.cutoff + closing_grace:
            return CycleStatus.CUTOFF_PASSED
        return CycleStatus.CLOSED


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None or instant.tzinfo.utcoffset(instant) is None:
        raise ValueError(f"Naive datetime not allowed: {instant!r}")
    return instant.astimezone(timezone.utc)


def _cycle_starting(monday: date) -> PaymentCycle:
    start = datetime.combine(monday, time.min, tzinfo=timezone.utc)
    return PaymentCycle(
        start=start,
        next_start=start + CYCLE_LENGTH,
        cutoff=start + CUTOFF_OFFSET,
    )


def cycle_containing(instant: datetime) -> PaymentCycle:
    """Return the cycle covering `instant`.

    Sessions are assigned by their end time, so a session ending exactly
    at Monday 00:00:00 belongs to the cycle starting that Monday.
    """
    instant = _as_utc(instant)
    day = instant.date()
    return _cycle_starting(day - timedelta(days=day.weekday()))


def is_cutoff_passed(cycle: PaymentCycle, now: datetime) -> bool:
    """True once `now` has reached the cycle's cutoff."""
    return _as_utc(now) >= cycle.cutoff


def cycle_for_id(cycle_id: str) -> PaymentCycle:
    """Rebuild a cycle from its identifier.

    Raises:
        ValueError: If the id is not an ISO date falling on a Monday.
    """
    monday = date.fromisoformat(cycle_id)
    if monday.weekday() != 0:
        raise ValueError(f"Cycle id must be a Monday: {cycle_id}")
    return _cycle_starting(monday)


def next_cycle(cycle: PaymentCycle) -> PaymentCycle:
    """Cycle immediately after `cycle`."""
    return _cycle_starting(cycle.next_start.date())


def previous_cycle(cycle: PaymentCycle) -> PaymentCycle:
    """Cycle immediately before `cycle`."""
    return _cycle_starting((cycle.start - CYCLE_LENGTH).date())


def cycles_between(start: datetime, end: datetime) -> Iterator[PaymentCycle]:
    """Yield every cycle overlapping [start, end], oldest first."""
    end = _as_utc(end)
    current = cycle_containing(start)
    while current.start <= end:
        yield current
        current = next_cycle(current)
