"""Notification events emitted by the payment run.

Events are immutable and only describe what already committed; the
delivery transport (email, push, SMS) lives outside this package.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from payout_engine.types import _serialize


class NotificationCategory(str, Enum):
    """Notification categories for routing and filtering."""

    CONFIRMATION = "confirmation"
    FEE_CHARGE = "fee_charge"
    CYCLE_SUMMARY = "cycle_summary"


@dataclass(frozen=True)
class NotificationEvent:
    """Base class for all notification events."""

    professional_id: str
    occurred_at: datetime

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> NotificationCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


# =============================================================================
# Confirmation events
# =============================================================================


@dataclass(frozen=True)
class ConfirmationRequested(NotificationEvent):
    """A professional is asked to confirm a completed session."""

    confirmation_id: UUID
    session_id: str
    cycle_id: str
    resolution_deadline: datetime

    @property
    def category(self) -> NotificationCategory:
        return NotificationCategory.CONFIRMATION


@dataclass(frozen=True)
class ConfirmationReminder(NotificationEvent):
    """A pending confirmation is close to its deadline."""

    confirmation_id: UUID
    session_id: str
    cycle_id: str
    resolution_deadline: datetime
    days_remaining: int

    @property
    def category(self) -> NotificationCategory:
        return NotificationCategory.CONFIRMATION


@dataclass(frozen=True)
class ConfirmationAutoResolved(NotificationEvent):
    """A confirmation passed its deadline and was treated as confirmed."""

    confirmation_id: UUID
    session_id: str
    cycle_id: str

    @property
    def category(self) -> NotificationCategory:
        return NotificationCategory.CONFIRMATION


# =============================================================================
# Fee charge events
# =============================================================================


@dataclass(frozen=True)
class FeeChargeSucceeded(NotificationEvent):
    """Platform fee collected."""

    fee_charge_id: UUID
    cycle_id: str
    amount: Decimal
    gateway_reference: str | None

    @property
    def category(self) -> NotificationCategory:
        return NotificationCategory.FEE_CHARGE


@dataclass(frozen=True)
class FeeChargeRetryScheduled(NotificationEvent):
    """Collection failed; another attempt will follow."""

    fee_charge_id: UUID
    cycle_id: str
    amount: Decimal
    attempt_count: int
    error: str

    @property
    def category(self) -> NotificationCategory:
        return NotificationCategory.FEE_CHARGE


@dataclass(frozen=True)
class FeeChargeFailed(NotificationEvent):
    """Collection failed for the last time; the charge is terminal."""

    fee_charge_id: UUID
    cycle_id: str
    amount: Decimal
    attempt_count: int
    error: str

    @property
    def category(self) -> NotificationCategory:
        return NotificationCategory.FEE_CHARGE


@dataclass(frozen=True)
class FeeChargeWaived(NotificationEvent):
    """An operator waived an unpaid fee."""

    fee_charge_id: UUID
    cycle_id: str
    amount: Decimal
    waived_by: str
    reason: str

    @property
    def category(self) -> NotificationCategory:
        return NotificationCategory.FEE_CHARGE


# =============================================================================
# Cycle summary events
# =============================================================================


@dataclass(frozen=True)
class CycleSummaryReady(NotificationEvent):
    """A professional's cycle closed and was billed."""

    cycle_id: str
    fee_charge_id: UUID
    sessions_count: int
    total_gross: Decimal
    total_platform_fees: Decimal
    total_net: Decimal

    @property
    def category(self) -> NotificationCategory:
        return NotificationCategory.CYCLE_SUMMARY
