"""Data store protocol for the payout engine.

The services talk to storage only through this protocol. Implementations
must provide:
- idempotent inserts backed by unique constraints (insert-or-no-op)
- conditional status updates (compare-and-swap on the current status)
- one short transaction per call, committed before returning
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Protocol, Sequence, Tuple
from uuid import UUID

from payout_engine.state_machine import ConfirmationStatus, FeeChargeStatus
from payout_engine.types import (
    AppointmentSession,
    Confirmation,
    Earning,
    FeeCharge,
)

# Keyset positions for paging past records a step skipped
SessionCursor = Tuple[datetime, str]
ConfirmationCursor = Tuple[datetime, UUID]


class DataStore(Protocol):
    """Storage operations used by the payment run."""

    def ping(self) -> bool:
        """Return True if the store answers."""
        ...

    # -- appointment sessions (read only) ---------------------------------

    def sessions_awaiting_confirmation(
        self,
        as_of: datetime,
        limit: int,
        *,
        after: SessionCursor | None = None,
    ) -> list[AppointmentSession]:
        """Completed sessions ended at or before `as_of` with no confirmation.

        Ordered by (end_time, session_id); `after` resumes past that key.
        """
        ...

    def get_session(self, session_id: str) -> AppointmentSession | None:
        """Fetch one session."""
        ...

    # -- confirmations -----------------------------------------------------

    def insert_confirmation(self, confirmation: Confirmation) -> bool:
        """Insert unless the session already has one. True if inserted.

        Raises:
            DataIntegrityError: If the referenced session does not exist.
        """
        ...

    def get_confirmation(self, confirmation_id: UUID) -> Confirmation | None:
        """Fetch one confirmation."""
        ...

    def pending_confirmations_due(
        self, as_of: datetime, limit: int
    ) -> list[Confirmation]:
        """PENDING confirmations whose deadline is at or before `as_of`."""
        ...

    def pending_confirmations_deadline_between(
        self,
        start: datetime,
        end: datetime,
        limit: int,
        *,
        after: ConfirmationCursor | None = None,
    ) -> list[Confirmation]:
        """PENDING confirmations with `start < resolution_deadline <= end`.

        Ordered by (resolution_deadline, confirmation_id); `after` resumes past that key.
        """
        ...

    def mark_confirmation_reminded(self, confirmation_id: UUID, days_remaining: int) -> bool:
        """Record a reminder for `days_remaining` unless one that close was already sent.

        True if the confirmation is still PENDING and had no reminder at
        `days_remaining` or fewer days.
        """
        ...

    def transition_confirmation(
        self,
        confirmation_id: UUID,
        *,
        from_statuses: Sequence[ConfirmationStatus],
        to_status: ConfirmationStatus,
        at: datetime,
        dispute_reason: str | None = None,
    ) -> bool:
        """Move a confirmation if its status is in `from_statuses`."""
        ...

    def resolved_confirmations_without_earning(
        self,
        limit: int,
        *,
        after: ConfirmationCursor | None = None,
    ) -> list[Confirmation]:
        """CONFIRMED or AUTO_RESOLVED confirmations that have no earning.

        Ordered by (created_at, confirmation_id); `after` resumes past that key.
        """
        ...

    # -- earnings ----------------------------------------------------------

    def insert_earning(self, earning: Earning) -> bool:
        """Insert unless the confirmation already has one. True if inserted."""
        ...

    def earnings_for_cycle(
        self, cycle_id: str, professional_id: str | None = None
    ) -> list[Earning]:
        """Earnings of a cycle, optionally for one professional."""
        ...

    def unbilled_cycle_ids(self) -> list[str]:
        """Cycles having PENDING_CHARGE earnings not yet linked to a charge."""
        ...

    def unbilled_earnings(self, cycle_id: str) -> list[Earning]:
        """PENDING_CHARGE earnings of a cycle not yet linked to a charge."""
        ...

    # -- fee charges -------------------------------------------------------

    def insert_fee_charge(self, charge: FeeCharge, earning_ids: Sequence[UUID]) -> bool:
        """Insert unless (professional, cycle) has one, linking `earning_ids`.

        Insert and link happen in one transaction. True if inserted.
        """
        ...

    def get_fee_charge(self, fee_charge_id: UUID) -> FeeCharge | None:
        """Fetch one fee charge."""
        ...

    def claimable_fee_charges(self, limit: int) -> list[FeeCharge]:
        """PENDING charges, oldest first."""
        ...

    def claim_fee_charge(
        self, fee_charge_id: UUID, *, at: datetime, due_by: datetime | None = None
    ) -> FeeCharge | None:
        """Atomically move a PENDING or retry-due RETRYING charge to PROCESSING.

        A RETRYING charge is claimable when its `next_retry_at` is at or
        before `due_by`, or at any time when `due_by` is None. Counts the
        attempt. Returns the claimed charge, or None when another run got
        there first.
        """
        ...

    def complete_fee_charge(
        self, fee_charge_id: UUID, *, reference: str | None, at: datetime
    ) -> bool:
        """PROCESSING → SUCCEEDED and linked earnings → CHARGED."""
        ...

    def fail_fee_charge(
        self,
        fee_charge_id: UUID,
        *,
        error: str,
        next_status: FeeChargeStatus,
        from_status: FeeChargeStatus = FeeChargeStatus.PROCESSING,
        started_before: datetime | None = None,
        next_retry_at: datetime | None = None,
    ) -> bool:
        """PROCESSING → RETRYING | FAILED; linked earnings → FAILED if FAILED.

        A RETRYING charge becomes due again at `next_retry_at`. With
        `started_before`, only applies when the attempt began earlier.
        """
        ...

    def retrying_fee_charges(
        self,
        limit: int,
        *,
        due_by: datetime | None = None,
        attempted_before: datetime | None = None,
    ) -> list[FeeCharge]:
        """RETRYING charges, oldest attempt first.

        Optionally only those due by `due_by` or last attempted before
        `attempted_before`.
        """
        ...

    def waive_fee_charge(
        self, fee_charge_id: UUID, *, waived_by: str, reason: str, at: datetime
    ) -> bool:
        """Waive an unpaid charge not in flight; linked unpaid earnings → WAIVED."""
        ...

    def fee_charges_for_professional(
        self,
        professional_id: str,
        *,
        status: FeeChargeStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FeeCharge]:
        """A professional's charges, newest first."""
        ...

    def fee_charge_totals(
        self, *, cycle_id: str | None = None, professional_id: str | None = None
    ) -> dict[str, tuple[int, Decimal]]:
        """(count, summed total_fee_amount) per status."""
        ...

    def stuck_fee_charges(self, started_before: datetime, limit: int) -> list[FeeCharge]:
        """PROCESSING charges whose attempt started before `started_before`."""
        ...

    # -- health counters ---------------------------------------------------

    def count_fee_charges_by_status(self) -> dict[str, int]:
        """Number of fee charges per status."""
        ...

    def count_stuck_fee_charges(self, started_before: datetime) -> int:
        """Number of PROCESSING charges started before `started_before`."""
        ...

    def count_overdue_confirmations(self, as_of: datetime) -> int:
        """Number of PENDING confirmations past their deadline."""
        ...

    def count_unbilled_late_earnings(self) -> int:
        """Unlinked PENDING_CHARGE earnings whose (professional, cycle) already has a charge."""
        ...
