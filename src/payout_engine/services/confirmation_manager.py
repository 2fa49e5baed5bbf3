"""Session confirmation lifecycle.

Completed sessions become PENDING confirmations owned by the cycle that
contains the session's end time. The professional may confirm or dispute
before the cycle cutoff; past the cutoff, silence counts as confirmation
and the scheduled run marks the confirmation AUTO_RESOLVED.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from payout_engine.config import PayoutConfig
from payout_engine.errors import (
    DataIntegrityError,
    InvalidTransitionError,
    RecordNotFoundError,
)
from payout_engine.notifications import (
    ConfirmationAutoResolved,
    ConfirmationReminder,
    ConfirmationRequested,
    NotificationDispatcher,
)
from payout_engine.services.cycle_calculator import cycle_containing
from payout_engine.state_machine import ConfirmationStatus
from payout_engine.store.base import ConfirmationCursor, DataStore, SessionCursor
from payout_engine.types import AppointmentSession, BatchTally, Confirmation, SkippedRecord

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)


def days_until(deadline: datetime, as_of: datetime) -> int:
    """Whole days left before `deadline`, rounded up; 0 once it has passed."""
    if deadline <= as_of:
        return 0
    return math.ceil((deadline - as_of) / DAY)


class ConfirmationManager:
    """Creates, resolves and transitions session confirmations."""

    def __init__(
        self,
        store: DataStore,
        config: PayoutConfig | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.store = store
        self.config = config or PayoutConfig()
        self.dispatcher = dispatcher or NotificationDispatcher()

    def create_pending_confirmations(
        self,
        as_of: datetime,
        *,
        tally: BatchTally | None = None,
    ) -> int:
        """Open a PENDING confirmation for every completed, unconfirmed session.

        Only sessions ended at or before `as_of` are considered. The
        confirmation deadline is the cutoff of the cycle containing the
        session's end time. Calling again creates nothing new. Sessions
        that cannot be confirmed are skipped and paged past, so they never
        hold back the sessions behind them.

        Returns:
            Number of confirmations created by this call.
        """
        tally = tally if tally is not None else BatchTally()
        start = tally.count
        limit = self.config.batch_limit
        after: SessionCursor | None = None
        while tally.count - start < limit:
            page = self.store.sessions_awaiting_confirmation(as_of, limit, after=after)
            for session in page:
                self._open_confirmation(session, as_of, tally)
            if len(page) < limit:
                break
            after = (page[-1].end_time, page[-1].session_id)

        created = tally.count - start
        if created:
            logger.info("Created %d pending confirmation(s)", created)
        return created

    def _open_confirmation(
        self, session: AppointmentSession, as_of: datetime, tally: BatchTally
    ) -> None:
        try:
            confirmation = self._new_confirmation(session, as_of)
            if not self.store.insert_confirmation(confirmation):
                return
        except DataIntegrityError as e:
            logger.warning("Skipping session %s: %s", session.session_id, e)
            tally.skipped.append(SkippedRecord("AppointmentSession", session.session_id, e.reason))
            return

        tally.count += 1
        self.dispatcher.emit(
            ConfirmationRequested(
                professional_id=confirmation.professional_id,
                occurred_at=as_of,
                confirmation_id=confirmation.confirmation_id,
                session_id=confirmation.session_id,
                cycle_id=confirmation.cycle_id,
                resolution_deadline=confirmation.resolution_deadline,
            )
        )

    def send_confirmation_reminders(
        self,
        as_of: datetime,
        *,
        tally: BatchTally | None = None,
    ) -> int:
        """Remind professionals of PENDING confirmations nearing their deadline.

        A reminder goes out when the days left before the deadline, rounded
        up, is one of `reminder_days`. A confirmation gets at most one
        reminder per threshold, however many runs see it.

        Returns:
            Number of reminders sent by this call.
        """
        tally = tally if tally is not None else BatchTally()
        start = tally.count
        thresholds = set(self.config.reminder_days)
        if not thresholds:
            return 0

        limit = self.config.batch_limit
        horizon = as_of + timedelta(days=max(thresholds))
        after: ConfirmationCursor | None = None
        while True:
            page = self.store.pending_confirmations_deadline_between(
                as_of, horizon, limit, after=after
            )
            for confirmation in page:
                self._remind(confirmation, as_of, thresholds, tally)
            if len(page) < limit:
                break
            after = (page[-1].resolution_deadline, page[-1].confirmation_id)

        sent = tally.count - start
        if sent:
            logger.info("Sent %d confirmation reminder(s)", sent)
        return sent

    def _remind(
        self,
        confirmation: Confirmation,
        as_of: datetime,
        thresholds: set[int],
        tally: BatchTally,
    ) -> None:
        days_remaining = days_until(confirmation.resolution_deadline, as_of)
        if days_remaining not in thresholds:
            return
        if not self.store.mark_confirmation_reminded(confirmation.confirmation_id, days_remaining):
            return

        tally.count += 1
        self.dispatcher.emit(
            ConfirmationReminder(
                professional_id=confirmation.professional_id,
                occurred_at=as_of,
                confirmation_id=confirmation.confirmation_id,
                session_id=confirmation.session_id,
                cycle_id=confirmation.cycle_id,
                resolution_deadline=confirmation.resolution_deadline,
                days_remaining=days_remaining,
            )
        )

    def _new_confirmation(self, session: AppointmentSession, as_of: datetime) -> Confirmation:
        if session.end_time < session.start_time:
            raise DataIntegrityError(
                "AppointmentSession", session.session_id, "session ends before it starts"
            )
        cycle = cycle_containing(session.end_time)
        return Confirmation(
            confirmation_id=uuid4(),
            session_id=session.session_id,
            professional_id=session.professional_id,
            cycle_id=cycle.cycle_id,
            status=ConfirmationStatus.PENDING,
            resolution_deadline=cycle.cutoff,
            created_at=as_of,
        )

    def auto_resolve_expired(
        self,
        as_of: datetime,
        *,
        tally: BatchTally | None = None,
    ) -> int:
        """Mark PENDING confirmations past their deadline as AUTO_RESOLVED.

        Each update is conditional on the confirmation still being PENDING,
        so a concurrent confirm/dispute or another run wins cleanly.

        Returns:
            Number of confirmations this call resolved.
        """
        tally = tally if tally is not None else BatchTally()
        start = tally.count
        for confirmation in self.store.pending_confirmations_due(as_of, self.config.batch_limit):
            changed = self.store.transition_confirmation(
                confirmation.confirmation_id,
                from_statuses=[ConfirmationStatus.PENDING],
                to_status=ConfirmationStatus.AUTO_RESOLVED,
                at=as_of,
            )
            if not changed:
                continue

            tally.count += 1
            self.dispatcher.emit(
                ConfirmationAutoResolved(
                    professional_id=confirmation.professional_id,
                    occurred_at=as_of,
                    confirmation_id=confirmation.confirmation_id,
                    session_id=confirmation.session_id,
                    cycle_id=confirmation.cycle_id,
                )
            )

        resolved = tally.count - start
        if resolved:
            logger.info("Auto-resolved %d confirmation(s)", resolved)
        return resolved

    def confirm(self, confirmation_id: UUID, at: datetime) -> Confirmation:
        """Professional confirms the session took place."""
        return self._resolve(confirmation_id, ConfirmationStatus.CONFIRMED, at)

    def dispute(self, confirmation_id: UUID, reason: str, at: datetime) -> Confirmation:
        """Professional disputes the session; no earning will be created."""
        if not reason or not reason.strip():
            raise ValueError("A dispute needs a reason")
        return self._resolve(confirmation_id, ConfirmationStatus.DISPUTED, at, reason.strip())

    def _resolve(
        self,
        confirmation_id: UUID,
        to_status: ConfirmationStatus,
        at: datetime,
        dispute_reason: str | None = None,
    ) -> Confirmation:
        current = self.store.get_confirmation(confirmation_id)
        if current is None:
            raise RecordNotFoundError("Confirmation", str(confirmation_id))
        if to_status == ConfirmationStatus.DISPUTED and at >= current.resolution_deadline:
            # Past the deadline the session counts as confirmed.
            raise InvalidTransitionError(
                current.status.value, to_status.value, "resolution deadline has passed"
            )

        changed = self.store.transition_confirmation(
            confirmation_id,
            from_statuses=[ConfirmationStatus.PENDING],
            to_status=to_status,
            at=at,
            dispute_reason=dispute_reason,
        )
        confirmation = self.store.get_confirmation(confirmation_id)
        if confirmation is None:
            raise RecordNotFoundError("Confirmation", str(confirmation_id))
        if not changed:
            raise InvalidTransitionError(
                confirmation.status.value,
                to_status.value,
                "confirmation is no longer pending",
            )

        logger.info("Confirmation %s %s", confirmation_id, to_status.value)
        return confirmation
