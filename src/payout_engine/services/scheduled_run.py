"""Scheduled payment run.

One run captures `now` once and executes, in order:

1. create_pending_confirmations
2. send_confirmation_reminders
3. auto_resolve_expired
4. create_earnings_for_confirmed
5. create_fee_charges
6. process_pending_charges
7. retry_failed_charges

A failing step is recorded against its name and the remaining steps still
run against whatever state exists; the counts a step reached before
failing are kept. The run itself never raises.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from payout_engine.config import PayoutConfig
from payout_engine.errors import PayoutEngineError
from payout_engine.gateways.base import PaymentGateway
from payout_engine.models.base import utcnow
from payout_engine.notifications import NotificationDispatcher, default_dispatcher
from payout_engine.services.confirmation_manager import ConfirmationManager
from payout_engine.services.cycle_calculator import cycle_containing
from payout_engine.services.earnings_aggregator import EarningsAggregator
from payout_engine.services.fee_charge_processor import FeeChargeProcessor
from payout_engine.services.policies import FeeRatePolicy, RetryBackoffPolicy
from payout_engine.state_machine import FeeChargeStatus
from payout_engine.store.base import DataStore
from payout_engine.types import (
    BatchTally,
    ChargeBatchResult,
    PaymentHealthReport,
    ScheduledRunResult,
    StepOutcome,
)

logger = logging.getLogger(__name__)

STEP_ORDER = (
    "create_pending_confirmations",
    "send_confirmation_reminders",
    "auto_resolve_expired",
    "create_earnings_for_confirmed",
    "create_fee_charges",
    "process_pending_charges",
    "retry_failed_charges",
)

Clock = Callable[[], datetime]


class ScheduledPaymentRun:
    """Wires the payment services together and runs them in order."""

    def __init__(
        self,
        store: DataStore,
        gateway: PaymentGateway,
        config: PayoutConfig | None = None,
        dispatcher: NotificationDispatcher | None = None,
        fee_rate_policy: FeeRatePolicy | None = None,
        backoff_policy: RetryBackoffPolicy | None = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.config = config or PayoutConfig()
        self.dispatcher = dispatcher or default_dispatcher()
        self.clock = clock

        self.confirmations = ConfirmationManager(store, self.config, self.dispatcher)
        self.earnings = EarningsAggregator(store, self.config, fee_rate_policy)
        self.fee_charges = FeeChargeProcessor(
            store, gateway, self.config, self.dispatcher, backoff_policy
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run_scheduled_payment_processing(self, trigger_type: str = "manual") -> ScheduledRunResult:
        """Run every step once against a single `now`."""
        started = time.monotonic()
        now = self.clock()
        result = ScheduledRunResult(started_at=now, as_of=now, trigger_type=trigger_type)
        logger.info("Scheduled payment run started (trigger=%s, as_of=%s)", trigger_type, now)

        try:
            for name in STEP_ORDER:
                self._run_step(result, name, getattr(self, f"_step_{name}"))
        except Exception as e:
            logger.exception("Scheduled payment run aborted")
            result.record_error("run", f"{type(e).__name__}: {e}")
        finally:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            result.success = (
                not result.errors
                and result.records_skipped == 0
                and all(step.ok for step in result.steps)
            )

        logger.info(
            "Scheduled payment run finished in %dms (success=%s, errors=%d)",
            result.duration_ms,
            result.success,
            len(result.errors),
        )
        return result

    def _run_step(
        self,
        result: ScheduledRunResult,
        name: str,
        step: Callable[[ScheduledRunResult, BatchTally], None],
    ) -> None:
        """Run one step; whatever it counted before failing is kept."""
        outcome = StepOutcome(name=name)
        tally = BatchTally()
        errors = tally.errors
        started = time.monotonic()
        try:
            step(result, tally)
        except Exception as e:
            logger.exception("Step %s failed", name)
            errors.append(f"{type(e).__name__}: {e}")
        finally:
            outcome.duration_ms = int((time.monotonic() - started) * 1000)
            outcome.count = tally.count
            for record in tally.skipped:
                result.records_skipped += 1
                result.record_error(name, f"skipped {record}")
            for error in errors:
                result.record_error(name, error)
            if errors:
                outcome.ok = False
                outcome.error = "; ".join(errors)
            result.steps.append(outcome)

    def _step_create_pending_confirmations(
        self, result: ScheduledRunResult, tally: BatchTally
    ) -> None:
        try:
            self.confirmations.create_pending_confirmations(result.as_of, tally=tally)
        finally:
            result.confirmations_created = tally.count

    def _step_send_confirmation_reminders(
        self, result: ScheduledRunResult, tally: BatchTally
    ) -> None:
        try:
            self.confirmations.send_confirmation_reminders(result.as_of, tally=tally)
        finally:
            result.confirmation_reminders_sent = tally.count

    def _step_auto_resolve_expired(
        self, result: ScheduledRunResult, tally: BatchTally
    ) -> None:
        try:
            self.confirmations.auto_resolve_expired(result.as_of, tally=tally)
        finally:
            result.confirmations_auto_resolved = tally.count

    def _step_create_earnings_for_confirmed(
        self, result: ScheduledRunResult, tally: BatchTally
    ) -> None:
        try:
            self.earnings.create_earnings_for_confirmed(result.as_of, tally=tally)
        finally:
            result.earnings_created = tally.count

    def _step_create_fee_charges(
        self, result: ScheduledRunResult, tally: BatchTally
    ) -> None:
        try:
            self.fee_charges.create_fee_charges(result.as_of, tally=tally)
        finally:
            result.fee_charges_created = tally.count

    def _step_process_pending_charges(
        self, result: ScheduledRunResult, tally: BatchTally
    ) -> None:
        batch = ChargeBatchResult()
        try:
            self.fee_charges.process_pending_charges(result.as_of, batch=batch)
        finally:
            self._add_charge_batch(result, batch, tally)

    def _step_retry_failed_charges(
        self, result: ScheduledRunResult, tally: BatchTally
    ) -> None:
        batch = ChargeBatchResult()
        try:
            self.fee_charges.retry_failed_charges(result.as_of, batch=batch)
        finally:
            self._add_charge_batch(result, batch, tally)
            result.fee_charges_retried = batch.attempted

    @staticmethod
    def _add_charge_batch(
        result: ScheduledRunResult, batch: ChargeBatchResult, tally: BatchTally
    ) -> None:
        tally.count = batch.attempted
        tally.errors.extend(batch.errors)
        result.fee_charges_succeeded += batch.succeeded
        result.fee_charges_failed += batch.failed
        result.fee_charges_retrying += batch.retrying

    def close(self) -> None:
        """Release the gateway thread pool."""
        self.fee_charges.close()

    # ------------------------------------------------------------------
    # Operator actions and health
    # ------------------------------------------------------------------

    def reclaim_stuck_charges(self, older_than: timedelta | None = None) -> int:
        """Release charges stuck in PROCESSING past `older_than` (default: configured threshold)."""
        return self.fee_charges.reclaim_stuck_charges(self.clock(), older_than)

    def check_payment_system_health(self) -> PaymentHealthReport:
        """Read-only snapshot; never changes any record."""
        now = self.clock()
        report = PaymentHealthReport(
            healthy=False,
            checked_at=now,
            database=False,
            current_cycle_id=cycle_containing(now).cycle_id,
        )

        try:
            report.database = self.store.ping()
            by_status = self.store.count_fee_charges_by_status()
            report.pending_fee_charges = by_status.get(FeeChargeStatus.PENDING.value, 0)
            report.retrying_fee_charges = by_status.get(FeeChargeStatus.RETRYING.value, 0)
            report.failed_fee_charges = by_status.get(FeeChargeStatus.FAILED.value, 0)
            report.stuck_processing_charges = self.store.count_stuck_fee_charges(
                now - self.config.stuck_processing_threshold
            )
            report.overdue_pending_confirmations = self.store.count_overdue_confirmations(now)
            report.unbilled_late_earnings = self.store.count_unbilled_late_earnings()
        except (PayoutEngineError, SQLAlchemyError) as e:
            logger.exception("Payment health check could not reach the store")
            report.database = False
            report.warnings.append(f"database unreachable: {e}")
            return report

        if report.stuck_processing_charges:
            report.warnings.append(
                f"{report.stuck_processing_charges} fee charge(s) stuck in processing"
            )
        if report.overdue_pending_confirmations:
            report.warnings.append(
                f"{report.overdue_pending_confirmations} confirmation(s) past deadline"
            )
        if report.failed_fee_charges:
            report.warnings.append(f"{report.failed_fee_charges} fee charge(s) failed")
        if report.unbilled_late_earnings:
            report.warnings.append(
                f"{report.unbilled_late_earnings} earning(s) arrived after their cycle was billed"
            )

        report.healthy = report.database and report.stuck_processing_charges == 0
        return report
