"""Status enums and transition rules for confirmations, earnings and fee charges."""

from __future__ import annotations

from enum import Enum

from payout_engine.errors import InvalidTransitionError


class ConfirmationStatus(str, Enum):
    """Confirmation status values."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"
    AUTO_RESOLVED = "auto_resolved"


class EarningStatus(str, Enum):
    """Earning status values."""

    PENDING_CHARGE = "pending_charge"
    CHARGED = "charged"
    FAILED = "failed"
    WAIVED = "waived"


class FeeChargeStatus(str, Enum):
    """Fee charge status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRYING = "retrying"
    WAIVED = "waived"


class CycleStatus(str, Enum):
    """Derived payment cycle status."""

    OPEN = "open"
    CUTOFF_PASSED = "cutoff_passed"
    CLOSED = "closed"


class _StateMachine:
    """Shared transition checks; subclasses define VALID_TRANSITIONS."""

    VALID_TRANSITIONS: dict[str, list[str]] = {}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(str(from_status), str(to_status))

    @classmethod
    def sources_for(cls, to_status: str) -> list[str]:
        """Statuses from which `to_status` may be reached."""
        return [
            from_status
            for from_status, targets in cls.VALID_TRANSITIONS.items()
            if to_status in targets
        ]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check whether no transition leaves this status."""
        return not cls.VALID_TRANSITIONS.get(status)


class ConfirmationStateMachine(_StateMachine):
    """Confirmation transitions.

    Allowed transitions:
    - pending → confirmed (professional action)
    - pending → disputed (professional action)
    - pending → auto_resolved (deadline passed without action)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ConfirmationStatus.PENDING: [
            ConfirmationStatus.CONFIRMED,
            ConfirmationStatus.DISPUTED,
            ConfirmationStatus.AUTO_RESOLVED,
        ],
        ConfirmationStatus.CONFIRMED: [],
        ConfirmationStatus.DISPUTED: [],
        ConfirmationStatus.AUTO_RESOLVED: [],
    }

    # Statuses that produce an earning
    EARNING_ELIGIBLE = {
        ConfirmationStatus.CONFIRMED,
        ConfirmationStatus.AUTO_RESOLVED,
    }


class EarningStateMachine(_StateMachine):
    """Earning transitions.

    Allowed transitions:
    - pending_charge → charged
    - pending_charge → failed
    - pending_charge → waived, failed → waived (fee waived by an operator)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        EarningStatus.PENDING_CHARGE: [
            EarningStatus.CHARGED,
            EarningStatus.FAILED,
            EarningStatus.WAIVED,
        ],
        EarningStatus.CHARGED: [],
        EarningStatus.FAILED: [EarningStatus.WAIVED],
        EarningStatus.WAIVED: [],
    }


class FeeChargeStateMachine(_StateMachine):
    """Fee charge transitions.

    Allowed transitions:
    - pending → processing (claimed by a run)
    - processing → succeeded
    - processing → retrying (attempt failed, attempts remain; or reclaimed)
    - processing → failed (attempts exhausted)
    - retrying → processing (retry due and claimed again)
    - pending, retrying, failed → waived (operator waiver)

    FAILED ends collection; only a waiver moves a charge out of it.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        FeeChargeStatus.PENDING: [FeeChargeStatus.PROCESSING, FeeChargeStatus.WAIVED],
        FeeChargeStatus.PROCESSING: [
            FeeChargeStatus.SUCCEEDED,
            FeeChargeStatus.RETRYING,
            FeeChargeStatus.FAILED,
        ],
        FeeChargeStatus.RETRYING: [FeeChargeStatus.PROCESSING, FeeChargeStatus.WAIVED],
        FeeChargeStatus.SUCCEEDED: [],
        FeeChargeStatus.FAILED: [FeeChargeStatus.WAIVED],
        FeeChargeStatus.WAIVED: [],
    }

    @classmethod
    def status_after_failure(cls, attempt_count: int, max_attempts: int) -> FeeChargeStatus:
        """Status a charge moves to after its `attempt_count`-th failed attempt."""
        if attempt_count >= max_attempts:
            return FeeChargeStatus.FAILED
        return FeeChargeStatus.RETRYING
