"""Earnings derived from resolved session confirmations."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from payout_engine.config import PayoutConfig
from payout_engine.errors import DataIntegrityError
from payout_engine.services.policies import FeeRatePolicy, ProfessionalOverrideFeeRatePolicy
from payout_engine.state_machine import ConfirmationStatus, EarningStatus
from payout_engine.store.base import ConfirmationCursor, DataStore
from payout_engine.types import (
    AppointmentSession,
    BatchTally,
    Confirmation,
    CycleEarningsSummary,
    Earning,
    SkippedRecord,
    quantize_money,
)

logger = logging.getLogger(__name__)


def calculate_amounts(
    session: AppointmentSession,
    fee_rate: Decimal,
    default_hourly_rate: Decimal = Decimal("0.00"),
) -> tuple[Decimal, Decimal, Decimal]:
    """Return (gross, fee, net) for a session.

    gross = hourly rate x duration in hours, fee = gross x rate; both
    rounded to cents, and net takes the remainder so gross == net + fee.
    """
    rate = session.hourly_rate if session.hourly_rate is not None else default_hourly_rate
    gross = quantize_money(rate * session.duration_hours)
    fee = quantize_money(gross * fee_rate)
    return gross, fee, gross - fee


class EarningsAggregator:
    """Creates earnings for resolved confirmations and reports on them."""

    def __init__(
        self,
        store: DataStore,
        config: PayoutConfig | None = None,
        fee_rate_policy: FeeRatePolicy | None = None,
    ):
        self.store = store
        self.config = config or PayoutConfig()
        self.fee_rate_policy = fee_rate_policy or ProfessionalOverrideFeeRatePolicy()

    def create_earnings_for_confirmed(
        self,
        as_of: datetime,
        *,
        tally: BatchTally | None = None,
    ) -> int:
        """Create one PENDING_CHARGE earning per CONFIRMED/AUTO_RESOLVED confirmation.

        Confirmations that already have an earning are left alone, so the
        call is safe to repeat. Pages past confirmations it has to skip,
        stopping once `batch_limit` earnings were created.

        Returns:
            Number of earnings created by this call.
        """
        tally = tally if tally is not None else BatchTally()
        start = tally.count
        limit = self.config.batch_limit
        after: ConfirmationCursor | None = None
        while tally.count - start < limit:
            page = self.store.resolved_confirmations_without_earning(limit, after=after)
            for confirmation in page:
                try:
                    earning = self._build_earning(confirmation, as_of)
                    if self.store.insert_earning(earning):
                        tally.count += 1
                except DataIntegrityError as e:
                    logger.warning(
                        "Skipping confirmation %s: %s", confirmation.confirmation_id, e
                    )
                    tally.skipped.append(SkippedRecord(e.record_type, e.record_id, e.reason))
            if len(page) < limit:
                break
            after = (page[-1].created_at, page[-1].confirmation_id)

        created = tally.count - start
        if created:
            logger.info("Created %d earning(s)", created)
        return created

    def _build_earning(self, confirmation: Confirmation, as_of: datetime) -> Earning:
        session = self.store.get_session(confirmation.session_id)
        if session is None:
            raise DataIntegrityError(
                "Confirmation",
                str(confirmation.confirmation_id),
                f"session {confirmation.session_id} not found",
            )
        if session.end_time < session.start_time:
            raise DataIntegrityError(
                "AppointmentSession", session.session_id, "session ends before it starts"
            )

        try:
            fee_rate = self.fee_rate_policy.rate_for(session)
        except ValueError as e:
            raise DataIntegrityError("AppointmentSession", session.session_id, str(e)) from e

        gross, fee, net = calculate_amounts(session, fee_rate, self.config.default_hourly_rate)
        return Earning(
            earning_id=uuid4(),
            confirmation_id=confirmation.confirmation_id,
            session_id=confirmation.session_id,
            professional_id=confirmation.professional_id,
            cycle_id=confirmation.cycle_id,
            gross_amount=gross,
            platform_fee_rate=fee_rate,
            platform_fee_amount=fee,
            net_amount=net,
            status=EarningStatus.PENDING_CHARGE,
            auto_resolved=confirmation.status == ConfirmationStatus.AUTO_RESOLVED,
            created_at=as_of,
        )

    def earnings_for_cycle(
        self, cycle_id: str, professional_id: str | None = None
    ) -> list[Earning]:
        """Earnings of a cycle; all professionals when `professional_id` is None."""
        return self.store.earnings_for_cycle(cycle_id, professional_id)

    def summarize_cycle(self, cycle_id: str) -> CycleEarningsSummary:
        """Totals for a cycle across all professionals."""
        earnings = self.store.earnings_for_cycle(cycle_id)
        by_status = Counter(e.status.value for e in earnings)
        return CycleEarningsSummary(
            cycle_id=cycle_id,
            earnings_count=len(earnings),
            professional_count=len({e.professional_id for e in earnings}),
            total_gross=sum((e.gross_amount for e in earnings), Decimal("0.00")),
            total_platform_fees=sum((e.platform_fee_amount for e in earnings), Decimal("0.00")),
            total_net=sum((e.net_amount for e in earnings), Decimal("0.00")),
            auto_resolved_count=sum(1 for e in earnings if e.auto_resolved),
            by_status=dict(by_status),
        )
