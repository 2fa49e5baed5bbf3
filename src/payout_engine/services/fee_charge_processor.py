"""Platform-fee charges: creation, collection, retry and waiver.

State machine per charge:
    PENDING -> PROCESSING -> SUCCEEDED | RETRYING | FAILED
    RETRYING -> PROCESSING   (claimed by retry_failed_charges once due)
    PENDING | RETRYING | FAILED -> WAIVED   (operator waiver)

Collection is at most once per attempt: a run must win the conditional
claim (-> PROCESSING, committed) before it may call the gateway, and the
outcome is written in a separate transaction afterwards.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from payout_engine.config import PayoutConfig
from payout_engine.errors import (
    DataIntegrityError,
    GatewayError,
    GatewayTimeoutError,
    InvalidTransitionError,
    RecordNotFoundError,
    TransientStoreError,
)
from payout_engine.gateways.base import CollectResult, PaymentGateway
from payout_engine.notifications import (
    CycleSummaryReady,
    FeeChargeFailed,
    FeeChargeRetryScheduled,
    FeeChargeSucceeded,
    FeeChargeWaived,
    NotificationDispatcher,
)
from payout_engine.services.cycle_calculator import cycle_for_id, is_cutoff_passed
from payout_engine.services.policies import FixedDailyBackoffPolicy, RetryBackoffPolicy
from payout_engine.state_machine import FeeChargeStateMachine, FeeChargeStatus
from payout_engine.store.base import DataStore
from payout_engine.types import (
    BatchTally,
    ChargeBatchResult,
    Earning,
    FeeCharge,
    FeeChargeSummary,
    PendingFeeTotal,
    SkippedRecord,
)

logger = logging.getLogger(__name__)

RECLAIMED_ERROR = "reclaimed"

# Statuses whose amount is still owed
OUTSTANDING_STATUSES = (
    FeeChargeStatus.PENDING,
    FeeChargeStatus.PROCESSING,
    FeeChargeStatus.RETRYING,
    FeeChargeStatus.FAILED,
)

ZERO = Decimal("0.00")


def idempotency_key_for(charge: FeeCharge) -> str:
    """Gateway idempotency key, unique per charge attempt."""
    return f"fee_charge_{charge.fee_charge_id}_{charge.attempt_count}"


class FeeChargeProcessor:
    """Creates fee charges and collects them through the payment gateway.

    Gateway calls run on a thread pool owned by the processor so each call
    can be abandoned at `gateway_timeout_seconds`. Call close() when done.
    """

    def __init__(
        self,
        store: DataStore,
        gateway: PaymentGateway,
        config: PayoutConfig | None = None,
        dispatcher: NotificationDispatcher | None = None,
        backoff_policy: RetryBackoffPolicy | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.config = config or PayoutConfig()
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.backoff_policy = backoff_policy or FixedDailyBackoffPolicy()
        self.executor = ThreadPoolExecutor(
            max_workers=self.config.gateway_max_workers, thread_name_prefix="gateway"
        )

    def close(self) -> None:
        """Stop the gateway thread pool; calls already running are abandoned."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_fee_charges(
        self,
        as_of: datetime,
        *,
        tally: BatchTally | None = None,
    ) -> int:
        """Create one PENDING charge per (professional, cycle) past cutoff.

        Each charge aggregates the professional's unbilled PENDING_CHARGE
        earnings for the cycle; the charge insert and the earning links
        commit together. A pair that already has a charge is left alone.
        Each new charge is followed by a cycle summary event.

        Returns:
            Number of charges created by this call.
        """
        tally = tally if tally is not None else BatchTally()
        start = tally.count
        for cycle_id in self.store.unbilled_cycle_ids():
            try:
                cycle = cycle_for_id(cycle_id)
            except ValueError as e:
                logger.warning("Skipping earnings with invalid cycle id %r: %s", cycle_id, e)
                tally.skipped.append(SkippedRecord("PaymentCycle", cycle_id, str(e)))
                continue
            if not is_cutoff_passed(cycle, as_of):
                continue

            by_professional: dict[str, list[Earning]] = defaultdict(list)
            for earning in self.store.unbilled_earnings(cycle_id):
                by_professional[earning.professional_id].append(earning)

            for professional_id, earnings in sorted(by_professional.items()):
                self._create_charge(professional_id, cycle_id, earnings, as_of, tally)

        return tally.count - start

    def _create_charge(
        self,
        professional_id: str,
        cycle_id: str,
        earnings: list[Earning],
        as_of: datetime,
        tally: BatchTally,
    ) -> None:
        charge = FeeCharge(
            fee_charge_id=uuid4(),
            professional_id=professional_id,
            cycle_id=cycle_id,
            total_fee_amount=sum((e.platform_fee_amount for e in earnings), ZERO),
            earnings_count=len(earnings),
            status=FeeChargeStatus.PENDING,
            attempt_count=0,
            created_at=as_of,
        )
        try:
            inserted = self.store.insert_fee_charge(charge, [e.earning_id for e in earnings])
        except DataIntegrityError as e:
            logger.warning("Skipping fee charge for %s cycle %s: %s", professional_id, cycle_id, e)
            tally.skipped.append(
                SkippedRecord("FeeCharge", f"{professional_id}/{cycle_id}", e.reason)
            )
            return
        if not inserted:
            return

        tally.count += 1
        logger.info(
            "Fee charge %s created for %s cycle %s: %s over %d earning(s)",
            charge.fee_charge_id,
            professional_id,
            cycle_id,
            charge.total_fee_amount,
            charge.earnings_count,
        )
        self.dispatcher.emit(
            CycleSummaryReady(
                professional_id=professional_id,
                occurred_at=as_of,
                cycle_id=cycle_id,
                fee_charge_id=charge.fee_charge_id,
                sessions_count=len(earnings),
                total_gross=sum((e.gross_amount for e in earnings), ZERO),
                total_platform_fees=charge.total_fee_amount,
                total_net=sum((e.net_amount for e in earnings), ZERO),
            )
        )

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def process_pending_charges(
        self,
        as_of: datetime,
        *,
        batch: ChargeBatchResult | None = None,
    ) -> ChargeBatchResult:
        """Claim and collect PENDING charges.

        A charge another run claimed first is counted as skipped and not
        touched. A store error on one charge is recorded in `errors` and
        the pass moves on to the next charge.
        """
        batch = batch if batch is not None else ChargeBatchResult()
        for candidate in self.store.claimable_fee_charges(self.config.batch_limit):
            self._claim_and_collect(candidate, as_of, batch)

        logger.info(
            "Fee charges processed: %d succeeded, %d retrying, %d failed, %d skipped",
            batch.succeeded,
            batch.retrying,
            batch.failed,
            batch.skipped,
        )
        return batch

    def _claim_and_collect(
        self,
        candidate: FeeCharge,
        as_of: datetime,
        batch: ChargeBatchResult,
        due_by: datetime | None = None,
    ) -> None:
        try:
            charge = self.store.claim_fee_charge(candidate.fee_charge_id, at=as_of, due_by=due_by)
            if charge is None:
                logger.debug("Fee charge %s claimed elsewhere", candidate.fee_charge_id)
                batch.skipped += 1
                return
            self._collect(charge, as_of, batch)
        except (TransientStoreError, DataIntegrityError) as e:
            logger.error("Fee charge %s not settled: %s", candidate.fee_charge_id, e)
            batch.errors.append(f"fee charge {candidate.fee_charge_id}: {e}")

    def _collect(self, charge: FeeCharge, as_of: datetime, batch: ChargeBatchResult) -> None:
        error: str | None = None
        outcome: CollectResult | None = None

        if charge.total_fee_amount <= 0:
            outcome = CollectResult(success=True, reason="nothing to collect")
        else:
            try:
                outcome = self._call_gateway(charge)
            except GatewayError as e:
                error = str(e)
            except Exception as e:
                logger.exception("Gateway raised for fee charge %s", charge.fee_charge_id)
                error = f"unexpected gateway error: {e}"

        if outcome is not None and outcome.success:
            if self.store.complete_fee_charge(
                charge.fee_charge_id, reference=outcome.reference_id, at=as_of
            ):
                batch.succeeded += 1
                self.dispatcher.emit(
                    FeeChargeSucceeded(
                        professional_id=charge.professional_id,
                        occurred_at=as_of,
                        fee_charge_id=charge.fee_charge_id,
                        cycle_id=charge.cycle_id,
                        amount=charge.total_fee_amount,
                        gateway_reference=outcome.reference_id,
                    )
                )
            else:
                logger.warning(
                    "Fee charge %s collected (ref %s) but no longer PROCESSING",
                    charge.fee_charge_id,
                    outcome.reference_id,
                )
                batch.skipped += 1
            return

        if error is None:
            error = (outcome.reason if outcome is not None else "") or "declined"
        self._record_failure(charge, error, as_of, batch)

    def _call_gateway(self, charge: FeeCharge) -> CollectResult:
        """Call the gateway, giving up after the configured timeout."""
        timeout = self.config.gateway_timeout_seconds
        future = self.executor.submit(
            self.gateway.collect,
            charge.professional_id,
            charge.total_fee_amount,
            idempotency_key=idempotency_key_for(charge),
        )
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError as e:
            future.cancel()
            raise GatewayTimeoutError(timeout) from e

    def _record_failure(
        self,
        charge: FeeCharge,
        error: str,
        as_of: datetime,
        batch: ChargeBatchResult,
        *,
        started_before: datetime | None = None,
        retry_at: datetime | None = None,
    ) -> FeeChargeStatus | None:
        next_status = FeeChargeStateMachine.status_after_failure(
            charge.attempt_count, self.config.max_charge_attempts
        )
        if retry_at is None:
            retry_at = as_of + self.backoff_policy.delay_after(charge.attempt_count)
        changed = self.store.fail_fee_charge(
            charge.fee_charge_id,
            error=error,
            next_status=next_status,
            started_before=started_before,
            next_retry_at=retry_at,
        )
        if not changed:
            logger.warning(
                "Fee charge %s no longer PROCESSING, failure not recorded",
                charge.fee_charge_id,
            )
            batch.skipped += 1
            return None

        if next_status == FeeChargeStatus.FAILED:
            batch.failed += 1
            logger.error(
                "Fee charge %s failed permanently after %d attempt(s): %s",
                charge.fee_charge_id,
                charge.attempt_count,
                error,
            )
            event_type = FeeChargeFailed
        else:
            batch.retrying += 1
            logger.warning(
                "Fee charge %s attempt %d failed, retry due %s: %s",
                charge.fee_charge_id,
                charge.attempt_count,
                retry_at.isoformat(),
                error,
            )
            event_type = FeeChargeRetryScheduled

        self.dispatcher.emit(
            event_type(
                professional_id=charge.professional_id,
                occurred_at=as_of,
                fee_charge_id=charge.fee_charge_id,
                cycle_id=charge.cycle_id,
                amount=charge.total_fee_amount,
                attempt_count=charge.attempt_count,
                error=error,
            )
        )
        return next_status

    # ------------------------------------------------------------------
    # Retry and recovery
    # ------------------------------------------------------------------

    def retry_failed_charges(
        self,
        as_of: datetime,
        min_age: timedelta | None = None,
        *,
        batch: ChargeBatchResult | None = None,
    ) -> int:
        """Claim and collect RETRYING charges that are due.

        A charge is due once its `next_retry_at` is within
        `retry_schedule_tolerance` of `as_of`, so a daily run that starts a
        little early still retries yesterday's failures. With `min_age`,
        charges last attempted at least that long ago are due instead.

        Returns:
            Number of charges attempted by this call.
        """
        batch = batch if batch is not None else ChargeBatchResult()
        start = batch.attempted
        limit = self.config.batch_limit
        if min_age is None:
            due_by: datetime | None = as_of + self.config.retry_schedule_tolerance
            candidates = self.store.retrying_fee_charges(limit, due_by=due_by)
        else:
            due_by = None
            candidates = self.store.retrying_fee_charges(
                limit, attempted_before=as_of - min_age
            )

        for candidate in candidates:
            self._claim_and_collect(candidate, as_of, batch, due_by=due_by)

        attempted = batch.attempted - start
        if attempted:
            logger.info(
                "Retried %d fee charge(s): %d succeeded, %d retrying, %d failed",
                attempted,
                batch.succeeded,
                batch.retrying,
                batch.failed,
            )
        return attempted

    def reclaim_stuck_charges(self, as_of: datetime, older_than: timedelta | None = None) -> int:
        """Release charges left PROCESSING by a run that never finished.

        Each one counts as a failed attempt ("reclaimed") and is due for
        retry at once, or goes FAILED if that was its last attempt.

        Returns:
            Number of charges reclaimed.
        """
        threshold = older_than if older_than is not None else self.config.stuck_processing_threshold
        started_before = as_of - threshold
        batch = ChargeBatchResult()
        reclaimed = 0

        for charge in self.store.stuck_fee_charges(started_before, self.config.batch_limit):
            status = self._record_failure(
                charge,
                RECLAIMED_ERROR,
                as_of,
                batch,
                started_before=started_before,
                retry_at=as_of,
            )
            if status is not None:
                reclaimed += 1

        if reclaimed:
            logger.warning("Reclaimed %d stuck fee charge(s)", reclaimed)
        return reclaimed

    # ------------------------------------------------------------------
    # Waiver
    # ------------------------------------------------------------------

    def waive_fee_charge(
        self,
        fee_charge_id: UUID,
        *,
        waived_by: str,
        reason: str,
        at: datetime,
    ) -> FeeCharge:
        """Waive an unpaid fee; its unpaid earnings become WAIVED.

        Raises:
            ValueError: If `waived_by` or `reason` is blank.
            RecordNotFoundError: If the charge does not exist.
            InvalidTransitionError: If the charge is collected, waived or
                being collected right now.
        """
        if not waived_by or not waived_by.strip():
            raise ValueError("A waiver needs the operator who grants it")
        if not reason or not reason.strip():
            raise ValueError("A waiver needs a reason")

        current = self.store.get_fee_charge(fee_charge_id)
        if current is None:
            raise RecordNotFoundError("FeeCharge", str(fee_charge_id))
        FeeChargeStateMachine.validate_transition(
            current.status.value, FeeChargeStatus.WAIVED.value
        )

        changed = self.store.waive_fee_charge(
            fee_charge_id, waived_by=waived_by.strip(), reason=reason.strip(), at=at
        )
        charge = self.store.get_fee_charge(fee_charge_id)
        if charge is None:
            raise RecordNotFoundError("FeeCharge", str(fee_charge_id))
        if not changed:
            raise InvalidTransitionError(
                charge.status.value, FeeChargeStatus.WAIVED.value, "fee charge changed status"
            )

        logger.warning(
            "Fee charge %s (%s) waived by %s: %s",
            fee_charge_id,
            charge.total_fee_amount,
            charge.waived_by,
            charge.waived_reason,
        )
        self.dispatcher.emit(
            FeeChargeWaived(
                professional_id=charge.professional_id,
                occurred_at=at,
                fee_charge_id=charge.fee_charge_id,
                cycle_id=charge.cycle_id,
                amount=charge.total_fee_amount,
                waived_by=charge.waived_by or waived_by,
                reason=charge.waived_reason or reason,
            )
        )
        return charge

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_fee_charge(self, fee_charge_id: UUID) -> FeeCharge:
        """Fetch one charge, raising RecordNotFoundError if missing."""
        charge = self.store.get_fee_charge(fee_charge_id)
        if charge is None:
            raise RecordNotFoundError("FeeCharge", str(fee_charge_id))
        return charge

    def fee_charges_for_professional(
        self,
        professional_id: str,
        status: FeeChargeStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FeeCharge]:
        """A professional's charges, newest first."""
        return self.store.fee_charges_for_professional(
            professional_id, status=status, limit=limit, offset=offset
        )

    def fee_charge_summary(
        self, cycle_id: str | None = None, professional_id: str | None = None
    ) -> FeeChargeSummary:
        """Counts and amounts per status, overall or for one cycle or professional."""
        totals = self.store.fee_charge_totals(cycle_id=cycle_id, professional_id=professional_id)

        def amount(*statuses: FeeChargeStatus) -> Decimal:
            return sum((totals.get(s.value, (0, ZERO))[1] for s in statuses), ZERO)

        return FeeChargeSummary(
            total_charges=sum(count for count, _ in totals.values()),
            by_status={status: count for status, (count, _) in sorted(totals.items())},
            total_amount=sum((total for _, total in totals.values()), ZERO),
            amount_collected=amount(FeeChargeStatus.SUCCEEDED),
            amount_outstanding=amount(*OUTSTANDING_STATUSES),
            amount_waived=amount(FeeChargeStatus.WAIVED),
            cycle_id=cycle_id,
            professional_id=professional_id,
        )

    def pending_fee_total(self, professional_id: str) -> PendingFeeTotal:
        """Fees the professional still owes, across all cycles."""
        totals = self.store.fee_charge_totals(professional_id=professional_id)
        outstanding = [totals.get(s.value, (0, ZERO)) for s in OUTSTANDING_STATUSES]
        return PendingFeeTotal(
            professional_id=professional_id,
            amount=sum((total for _, total in outstanding), ZERO),
            charge_count=sum(count for count, _ in outstanding),
        )
