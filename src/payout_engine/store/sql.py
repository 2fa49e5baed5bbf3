"""SQLAlchemy implementation of the data store.

Each public method runs in its own transaction through `_run`, which also
retries transient database errors. Idempotent inserts use the dialect's
`INSERT ... ON CONFLICT DO NOTHING`; status changes are conditional
`UPDATE ... WHERE status IN (...)` whose row count decides the winner.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import Table, and_, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from payout_engine.errors import DataIntegrityError, TransientStoreError
from payout_engine.models import (
    AppointmentSessionRow,
    ConfirmationRow,
    EarningRow,
    FeeChargeRow,
)
from payout_engine.state_machine import (
    ConfirmationStateMachine,
    ConfirmationStatus,
    EarningStateMachine,
    EarningStatus,
    FeeChargeStateMachine,
    FeeChargeStatus,
)
from payout_engine.store.base import ConfirmationCursor, SessionCursor
from payout_engine.types import (
    AppointmentSession,
    Confirmation,
    Earning,
    FeeCharge,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_confirmation: Table = ConfirmationRow.__table__  # type: ignore[assignment]
_earning: Table = EarningRow.__table__  # type: ignore[assignment]
_fee_charge: Table = FeeChargeRow.__table__  # type: ignore[assignment]

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SqlDataStore:
    """Data store over a SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        retry_attempts: int = 3,
        retry_pause_seconds: float = 0.2,
    ):
        self.session_factory = session_factory
        self.retry_attempts = retry_attempts
        self.retry_pause_seconds = retry_pause_seconds

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run `work` in one transaction, retrying transient failures."""
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.session_factory.begin() as session:
                    return work(session)
            except (OperationalError, InterfaceError) as e:
                if attempt >= self.retry_attempts:
                    raise TransientStoreError(operation, attempt, e) from e
                logger.warning(
                    "Transient store error in %s (attempt %d/%d): %s",
                    operation,
                    attempt,
                    self.retry_attempts,
                    e,
                )
                time.sleep(self.retry_pause_seconds * attempt)

    def _insert_ignore(
        self,
        session: Session,
        table: Table,
        values: dict[str, Any],
        conflict_columns: Sequence[str],
    ) -> bool:
        """Insert a row unless it collides on `conflict_columns`. True if inserted."""
        dialect = session.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Unsupported dialect for idempotent insert: {dialect}")

        stmt = insert(table).values(**values).on_conflict_do_nothing(
            index_elements=list(conflict_columns)
        )
        result = session.execute(stmt)
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        return self._run("ping", lambda s: s.execute(select(1)).scalar_one() == 1)

    # ------------------------------------------------------------------
    # Appointment sessions
    # ------------------------------------------------------------------

    def sessions_awaiting_confirmation(
        self,
        as_of: datetime,
        limit: int,
        *,
        after: SessionCursor | None = None,
    ) -> list[AppointmentSession]:
        def work(session: Session) -> list[AppointmentSession]:
            query = (
                select(AppointmentSessionRow)
                .outerjoin(
                    ConfirmationRow,
                    ConfirmationRow.session_id == AppointmentSessionRow.session_id,
                )
                .where(
                    AppointmentSessionRow.completed.is_(True),
                    AppointmentSessionRow.end_time <= as_of,
                    ConfirmationRow.confirmation_id.is_(None),
                )
            )
            if after is not None:
                query = query.where(
                    _after(AppointmentSessionRow.end_time, AppointmentSessionRow.session_id, after)
                )
            rows = session.scalars(
                query.order_by(AppointmentSessionRow.end_time, AppointmentSessionRow.session_id)
                .limit(limit)
            ).all()
            return [_to_session(row) for row in rows]

        return self._run("sessions_awaiting_confirmation", work)

    def get_session(self, session_id: str) -> AppointmentSession | None:
        def work(session: Session) -> AppointmentSession | None:
            row = session.get(AppointmentSessionRow, session_id)
            return _to_session(row) if row else None

        return self._run("get_session", work)

    # ------------------------------------------------------------------
    # Confirmations
    # ------------------------------------------------------------------

    def insert_confirmation(self, confirmation: Confirmation) -> bool:
        def work(session: Session) -> bool:
            return self._insert_ignore(
                session,
                _confirmation,
                {
                    "confirmation_id": confirmation.confirmation_id,
                    "session_id": confirmation.session_id,
                    "professional_id": confirmation.professional_id,
                    "cycle_id": confirmation.cycle_id,
                    "status": ConfirmationStatus(confirmation.status).value,
                    "resolution_deadline": confirmation.resolution_deadline,
                    "resolved_at": confirmation.resolved_at,
                    "created_at": confirmation.created_at,
                },
                ["session_id"],
            )

        try:
            return self._run("insert_confirmation", work)
        except IntegrityError as e:
            raise DataIntegrityError(
                "AppointmentSession", confirmation.session_id, f"cannot confirm: {e.orig}"
            ) from e

    def get_confirmation(self, confirmation_id: UUID) -> Confirmation | None:
        def work(session: Session) -> Confirmation | None:
            row = session.get(ConfirmationRow, confirmation_id)
            return _to_confirmation(row) if row else None

        return self._run("get_confirmation", work)

    def pending_confirmations_due(
        self, as_of: datetime, limit: int
    ) -> list[Confirmation]:
        def work(session: Session) -> list[Confirmation]:
            rows = session.scalars(
                select(ConfirmationRow)
                .where(
                    ConfirmationRow.status == ConfirmationStatus.PENDING.value,
                    ConfirmationRow.resolution_deadline <= as_of,
                )
                .order_by(ConfirmationRow.resolution_deadline, ConfirmationRow.created_at)
                .limit(limit)
            ).all()
            return [_to_confirmation(row) for row in rows]

        return self._run("pending_confirmations_due", work)

    def pending_confirmations_deadline_between(
        self,
        start: datetime,
        end: datetime,
        limit: int,
        *,
        after: ConfirmationCursor | None = None,
    ) -> list[Confirmation]:
        def work(session: Session) -> list[Confirmation]:
            query = select(ConfirmationRow).where(
                ConfirmationRow.status == ConfirmationStatus.PENDING.value,
                ConfirmationRow.resolution_deadline > start,
                ConfirmationRow.resolution_deadline <= end,
            )
            if after is not None:
                query = query.where(
                    _after(
                        ConfirmationRow.resolution_deadline, ConfirmationRow.confirmation_id, after
                    )
                )
            rows = session.scalars(
                query.order_by(ConfirmationRow.resolution_deadline, ConfirmationRow.confirmation_id)
                .limit(limit)
            ).all()
            return [_to_confirmation(row) for row in rows]

        return self._run("pending_confirmations_deadline_between", work)

    def mark_confirmation_reminded(self, confirmation_id: UUID, days_remaining: int) -> bool:
        def work(session: Session) -> bool:
            result = session.execute(
                update(_confirmation)
                .where(
                    _confirmation.c.confirmation_id == confirmation_id,
                    _confirmation.c.status == ConfirmationStatus.PENDING.value,
                    or_(
                        _confirmation.c.reminded_days_remaining.is_(None),
                        _confirmation.c.reminded_days_remaining > days_remaining,
                    ),
                )
                .values(reminded_days_remaining=days_remaining)
            )
            return result.rowcount == 1

        return self._run("mark_confirmation_reminded", work)

    def transition_confirmation(
        self,
        confirmation_id: UUID,
        *,
        from_statuses: Sequence[ConfirmationStatus],
        to_status: ConfirmationStatus,
        at: datetime,
        dispute_reason: str | None = None,
    ) -> bool:
        for from_status in from_statuses:
            ConfirmationStateMachine.validate_transition(from_status, to_status)

        values: dict[str, Any] = {"status": to_status.value, "resolved_at": at}
        if dispute_reason is not None:
            values["dispute_reason"] = dispute_reason

        def work(session: Session) -> bool:
            result = session.execute(
                update(_confirmation)
                .where(
                    _confirmation.c.confirmation_id == confirmation_id,
                    _confirmation.c.status.in_([s.value for s in from_statuses]),
                )
                .values(**values)
            )
            return result.rowcount == 1

        return self._run("transition_confirmation", work)

    def resolved_confirmations_without_earning(
        self,
        limit: int,
        *,
        after: ConfirmationCursor | None = None,
    ) -> list[Confirmation]:
        def work(session: Session) -> list[Confirmation]:
            query = (
                select(ConfirmationRow)
                .outerjoin(EarningRow, EarningRow.confirmation_id == ConfirmationRow.confirmation_id)
                .where(
                    ConfirmationRow.status.in_(
                        [s.value for s in ConfirmationStateMachine.EARNING_ELIGIBLE]
                    ),
                    EarningRow.earning_id.is_(None),
                )
            )
            if after is not None:
                query = query.where(
                    _after(ConfirmationRow.created_at, ConfirmationRow.confirmation_id, after)
                )
            rows = session.scalars(
                query.order_by(ConfirmationRow.created_at, ConfirmationRow.confirmation_id)
                .limit(limit)
            ).all()
            return [_to_confirmation(row) for row in rows]

        return self._run("resolved_confirmations_without_earning", work)

    # ------------------------------------------------------------------
    # Earnings
    # ------------------------------------------------------------------

    def insert_earning(self, earning: Earning) -> bool:
        def work(session: Session) -> bool:
            return self._insert_ignore(
                session,
                _earning,
                {
                    "earning_id": earning.earning_id,
                    "confirmation_id": earning.confirmation_id,
                    "session_id": earning.session_id,
                    "professional_id": earning.professional_id,
                    "cycle_id": earning.cycle_id,
                    "gross_amount": earning.gross_amount,
                    "platform_fee_rate": earning.platform_fee_rate,
                    "platform_fee_amount": earning.platform_fee_amount,
                    "net_amount": earning.net_amount,
                    "status": EarningStatus(earning.status).value,
                    "auto_resolved": earning.auto_resolved,
                    "fee_charge_id": earning.fee_charge_id,
                    "created_at": earning.created_at,
                },
                ["confirmation_id"],
            )

        try:
            return self._run("insert_earning", work)
        except IntegrityError as e:
            raise DataIntegrityError(
                "Confirmation", str(earning.confirmation_id), f"cannot record earning: {e.orig}"
            ) from e

    def earnings_for_cycle(
        self, cycle_id: str, professional_id: str | None = None
    ) -> list[Earning]:
        def work(session: Session) -> list[Earning]:
            query = select(EarningRow).where(EarningRow.cycle_id == cycle_id)
            if professional_id is not None:
                query = query.where(EarningRow.professional_id == professional_id)
            query = query.order_by(
                EarningRow.professional_id, EarningRow.created_at, EarningRow.earning_id
            )
            return [_to_earning(row) for row in session.scalars(query).all()]

        return self._run("earnings_for_cycle", work)

    def unbilled_cycle_ids(self) -> list[str]:
        def work(session: Session) -> list[str]:
            return list(
                session.scalars(
                    select(EarningRow.cycle_id)
                    .where(
                        EarningRow.status == EarningStatus.PENDING_CHARGE.value,
                        EarningRow.fee_charge_id.is_(None),
                    )
                    .distinct()
                    .order_by(EarningRow.cycle_id)
                ).all()
            )

        return self._run("unbilled_cycle_ids", work)

    def unbilled_earnings(self, cycle_id: str) -> list[Earning]:
        def work(session: Session) -> list[Earning]:
            rows = session.scalars(
                select(EarningRow)
                .where(
                    EarningRow.cycle_id == cycle_id,
                    EarningRow.status == EarningStatus.PENDING_CHARGE.value,
                    EarningRow.fee_charge_id.is_(None),
                )
                .order_by(EarningRow.professional_id, EarningRow.created_at)
            ).all()
            return [_to_earning(row) for row in rows]

        return self._run("unbilled_earnings", work)

    # ------------------------------------------------------------------
    # Fee charges
    # ------------------------------------------------------------------

    def insert_fee_charge(self, charge: FeeCharge, earning_ids: Sequence[UUID]) -> bool:
        if not earning_ids:
            raise ValueError("A fee charge needs at least one earning")

        def work(session: Session) -> bool:
            inserted = self._insert_ignore(
                session,
                _fee_charge,
                {
                    "fee_charge_id": charge.fee_charge_id,
                    "professional_id": charge.professional_id,
                    "cycle_id": charge.cycle_id,
                    "total_fee_amount": charge.total_fee_amount,
                    "earnings_count": charge.earnings_count,
                    "status": FeeChargeStatus(charge.status).value,
                    "attempt_count": charge.attempt_count,
                    "created_at": charge.created_at,
                },
                ["professional_id", "cycle_id"],
            )
            if not inserted:
                return False

            linked = session.execute(
                update(_earning)
                .where(
                    _earning.c.earning_id.in_(list(earning_ids)),
                    _earning.c.professional_id == charge.professional_id,
                    _earning.c.cycle_id == charge.cycle_id,
                    _earning.c.status == EarningStatus.PENDING_CHARGE.value,
                    _earning.c.fee_charge_id.is_(None),
                )
                .values(fee_charge_id=charge.fee_charge_id)
            ).rowcount
            if linked != len(earning_ids):
                # Rolls back the charge insert with the rest of the transaction.
                raise DataIntegrityError(
                    "FeeCharge",
                    str(charge.fee_charge_id),
                    f"linked {linked} of {len(earning_ids)} earnings",
                )
            return True

        return self._run("insert_fee_charge", work)

    def get_fee_charge(self, fee_charge_id: UUID) -> FeeCharge | None:
        def work(session: Session) -> FeeCharge | None:
            row = session.get(FeeChargeRow, fee_charge_id)
            return _to_fee_charge(row) if row else None

        return self._run("get_fee_charge", work)

    def claimable_fee_charges(self, limit: int) -> list[FeeCharge]:
        def work(session: Session) -> list[FeeCharge]:
            rows = session.scalars(
                select(FeeChargeRow)
                .where(FeeChargeRow.status == FeeChargeStatus.PENDING.value)
                .order_by(FeeChargeRow.created_at, FeeChargeRow.fee_charge_id)
                .limit(limit)
            ).all()
            return [_to_fee_charge(row) for row in rows]

        return self._run("claimable_fee_charges", work)

    def claim_fee_charge(
        self, fee_charge_id: UUID, *, at: datetime, due_by: datetime | None = None
    ) -> FeeCharge | None:
        retry_due = _fee_charge.c.status == FeeChargeStatus.RETRYING.value
        if due_by is not None:
            retry_due = and_(retry_due, _fee_charge.c.next_retry_at <= due_by)

        def work(session: Session) -> FeeCharge | None:
            result = session.execute(
                update(_fee_charge)
                .where(
                    _fee_charge.c.fee_charge_id == fee_charge_id,
                    or_(_fee_charge.c.status == FeeChargeStatus.PENDING.value, retry_due),
                )
                .values(
                    status=FeeChargeStatus.PROCESSING.value,
                    attempt_count=_fee_charge.c.attempt_count + 1,
                    last_attempt_at=at,
                    next_retry_at=None,
                )
            )
            if result.rowcount != 1:
                return None
            row = session.get(FeeChargeRow, fee_charge_id)
            return _to_fee_charge(row) if row else None

        return self._run("claim_fee_charge", work)

    def complete_fee_charge(
        self, fee_charge_id: UUID, *, reference: str | None, at: datetime
    ) -> bool:
        def work(session: Session) -> bool:
            result = session.execute(
                update(_fee_charge)
                .where(
                    _fee_charge.c.fee_charge_id == fee_charge_id,
                    _fee_charge.c.status == FeeChargeStatus.PROCESSING.value,
                )
                .values(
                    status=FeeChargeStatus.SUCCEEDED.value,
                    gateway_reference=reference,
                    charged_at=at,
                    last_error=None,
                )
            )
            if result.rowcount != 1:
                return False
            _move_linked_earnings(session, fee_charge_id, EarningStatus.CHARGED)
            return True

        return self._run("complete_fee_charge", work)

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
        FeeChargeStateMachine.validate_transition(from_status, next_status)

        def work(session: Session) -> bool:
            conditions = [
                _fee_charge.c.fee_charge_id == fee_charge_id,
                _fee_charge.c.status == from_status.value,
            ]
            if started_before is not None:
                conditions.append(_fee_charge.c.last_attempt_at < started_before)
            result = session.execute(
                update(_fee_charge)
                .where(*conditions)
                .values(
                    status=next_status.value,
                    last_error=error[:2000],
                    next_retry_at=(
                        next_retry_at if next_status == FeeChargeStatus.RETRYING else None
                    ),
                )
            )
            if result.rowcount != 1:
                return False
            if next_status == FeeChargeStatus.FAILED:
                _move_linked_earnings(session, fee_charge_id, EarningStatus.FAILED)
            return True

        return self._run("fail_fee_charge", work)

    def retrying_fee_charges(
        self,
        limit: int,
        *,
        due_by: datetime | None = None,
        attempted_before: datetime | None = None,
    ) -> list[FeeCharge]:
        def work(session: Session) -> list[FeeCharge]:
            query = select(FeeChargeRow).where(
                FeeChargeRow.status == FeeChargeStatus.RETRYING.value
            )
            if due_by is not None:
                query = query.where(FeeChargeRow.next_retry_at <= due_by)
            if attempted_before is not None:
                query = query.where(FeeChargeRow.last_attempt_at <= attempted_before)
            rows = session.scalars(
                query.order_by(FeeChargeRow.last_attempt_at, FeeChargeRow.fee_charge_id)
                .limit(limit)
            ).all()
            return [_to_fee_charge(row) for row in rows]

        return self._run("retrying_fee_charges", work)

    def waive_fee_charge(
        self, fee_charge_id: UUID, *, waived_by: str, reason: str, at: datetime
    ) -> bool:
        waivable = [s.value for s in FeeChargeStateMachine.sources_for(FeeChargeStatus.WAIVED)]

        def work(session: Session) -> bool:
            result = session.execute(
                update(_fee_charge)
                .where(
                    _fee_charge.c.fee_charge_id == fee_charge_id,
                    _fee_charge.c.status.in_(waivable),
                )
                .values(
                    status=FeeChargeStatus.WAIVED.value,
                    waived_at=at,
                    waived_by=waived_by,
                    waived_reason=reason[:2000],
                    next_retry_at=None,
                )
            )
            if result.rowcount != 1:
                return False
            _move_linked_earnings(session, fee_charge_id, EarningStatus.WAIVED)
            return True

        return self._run("waive_fee_charge", work)

    def fee_charges_for_professional(
        self,
        professional_id: str,
        *,
        status: FeeChargeStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FeeCharge]:
        def work(session: Session) -> list[FeeCharge]:
            query = select(FeeChargeRow).where(FeeChargeRow.professional_id == professional_id)
            if status is not None:
                query = query.where(FeeChargeRow.status == FeeChargeStatus(status).value)
            rows = session.scalars(
                query.order_by(FeeChargeRow.created_at.desc(), FeeChargeRow.cycle_id.desc())
                .limit(limit)
                .offset(offset)
            ).all()
            return [_to_fee_charge(row) for row in rows]

        return self._run("fee_charges_for_professional", work)

    def fee_charge_totals(
        self, *, cycle_id: str | None = None, professional_id: str | None = None
    ) -> dict[str, tuple[int, Decimal]]:
        def work(session: Session) -> dict[str, tuple[int, Decimal]]:
            query = select(
                FeeChargeRow.status,
                func.count(),
                func.coalesce(func.sum(FeeChargeRow.total_fee_amount), 0),
            )
            if cycle_id is not None:
                query = query.where(FeeChargeRow.cycle_id == cycle_id)
            if professional_id is not None:
                query = query.where(FeeChargeRow.professional_id == professional_id)
            rows = session.execute(query.group_by(FeeChargeRow.status)).all()
            return {status: (count, _money(total)) for status, count, total in rows}

        return self._run("fee_charge_totals", work)

    def stuck_fee_charges(self, started_before: datetime, limit: int) -> list[FeeCharge]:
        def work(session: Session) -> list[FeeCharge]:
            rows = session.scalars(
                select(FeeChargeRow)
                .where(
                    FeeChargeRow.status == FeeChargeStatus.PROCESSING.value,
                    FeeChargeRow.last_attempt_at < started_before,
                )
                .order_by(FeeChargeRow.last_attempt_at)
                .limit(limit)
            ).all()
            return [_to_fee_charge(row) for row in rows]

        return self._run("stuck_fee_charges", work)

    # ------------------------------------------------------------------
    # Health counters
    # ------------------------------------------------------------------

    def count_fee_charges_by_status(self) -> dict[str, int]:
        def work(session: Session) -> dict[str, int]:
            rows = session.execute(
                select(FeeChargeRow.status, func.count()).group_by(FeeChargeRow.status)
            ).all()
            return {status: count for status, count in rows}

        return self._run("count_fee_charges_by_status", work)

    def count_stuck_fee_charges(self, started_before: datetime) -> int:
        def work(session: Session) -> int:
            return session.scalar(
                select(func.count())
                .select_from(FeeChargeRow)
                .where(
                    FeeChargeRow.status == FeeChargeStatus.PROCESSING.value,
                    FeeChargeRow.last_attempt_at < started_before,
                )
            ) or 0

        return self._run("count_stuck_fee_charges", work)

    def count_overdue_confirmations(self, as_of: datetime) -> int:
        def work(session: Session) -> int:
            return session.scalar(
                select(func.count())
                .select_from(ConfirmationRow)
                .where(
                    ConfirmationRow.status == ConfirmationStatus.PENDING.value,
                    ConfirmationRow.resolution_deadline <= as_of,
                )
            ) or 0

        return self._run("count_overdue_confirmations", work)

    def count_unbilled_late_earnings(self) -> int:
        def work(session: Session) -> int:
            return session.scalar(
                select(func.count())
                .select_from(EarningRow)
                .join(
                    FeeChargeRow,
                    and_(
                        FeeChargeRow.professional_id == EarningRow.professional_id,
                        FeeChargeRow.cycle_id == EarningRow.cycle_id,
                    ),
                )
                .where(
                    EarningRow.status == EarningStatus.PENDING_CHARGE.value,
                    EarningRow.fee_charge_id.is_(None),
                )
            ) or 0

        return self._run("count_unbilled_late_earnings", work)


def _after(first: Any, second: Any, cursor: tuple[Any, Any]) -> Any:
    """Keyset predicate: rows ordered strictly after `cursor` on (first, second)."""
    return or_(first > cursor[0], and_(first == cursor[0], second > cursor[1]))


def _move_linked_earnings(session: Session, fee_charge_id: UUID, target: EarningStatus) -> None:
    """Move the earnings billed by a charge to `target`, where the transition allows."""
    sources = EarningStateMachine.sources_for(target)
    session.execute(
        update(_earning)
        .where(
            _earning.c.fee_charge_id == fee_charge_id,
            _earning.c.status.in_([EarningStatus(s).value for s in sources]),
        )
        .values(status=target.value)
    )


# =============================================================================
# Row → record conversion (validates at the boundary)
# =============================================================================


def _enum_value(enum_type: Any, value: str, record_type: str, record_id: Any) -> Any:
    try:
        return enum_type(value)
    except ValueError as e:
        raise DataIntegrityError(record_type, str(record_id), f"unknown status {value!r}") from e


def _money(value: Decimal | float | None) -> Decimal:
    return Decimal(str(value if value is not None else "0")).quantize(Decimal("0.01"))


def _to_session(row: AppointmentSessionRow) -> AppointmentSession:
    return AppointmentSession(
        session_id=row.session_id,
        professional_id=row.professional_id,
        start_time=row.start_time,
        end_time=row.end_time,
        completed=bool(row.completed),
        hourly_rate=_money(row.hourly_rate) if row.hourly_rate is not None else None,
        platform_fee_rate=(
            Decimal(str(row.platform_fee_rate)) if row.platform_fee_rate is not None else None
        ),
    )


def _to_confirmation(row: ConfirmationRow) -> Confirmation:
    return Confirmation(
        confirmation_id=row.confirmation_id,
        session_id=row.session_id,
        professional_id=row.professional_id,
        cycle_id=row.cycle_id,
        status=_enum_value(ConfirmationStatus, row.status, "Confirmation", row.confirmation_id),
        resolution_deadline=row.resolution_deadline,
        created_at=row.created_at,
        resolved_at=row.resolved_at,
        dispute_reason=row.dispute_reason,
        reminded_days_remaining=row.reminded_days_remaining,
    )


def _to_earning(row: EarningRow) -> Earning:
    try:
        return Earning(
            earning_id=row.earning_id,
            confirmation_id=row.confirmation_id,
            session_id=row.session_id,
            professional_id=row.professional_id,
            cycle_id=row.cycle_id,
            gross_amount=_money(row.gross_amount),
            platform_fee_rate=Decimal(str(row.platform_fee_rate)),
            platform_fee_amount=_money(row.platform_fee_amount),
            net_amount=_money(row.net_amount),
            status=_enum_value(EarningStatus, row.status, "Earning", row.earning_id),
            auto_resolved=bool(row.auto_resolved),
            created_at=row.created_at,
            fee_charge_id=row.fee_charge_id,
        )
    except ValueError as e:
        raise DataIntegrityError("Earning", str(row.earning_id), str(e)) from e


def _to_fee_charge(row: FeeChargeRow) -> FeeCharge:
    return FeeCharge(
        fee_charge_id=row.fee_charge_id,
        professional_id=row.professional_id,
        cycle_id=row.cycle_id,
        total_fee_amount=_money(row.total_fee_amount),
        earnings_count=row.earnings_count,
        status=_enum_value(FeeChargeStatus, row.status, "FeeCharge", row.fee_charge_id),
        attempt_count=row.attempt_count,
        created_at=row.created_at,
        last_attempt_at=row.last_attempt_at,
        last_error=row.last_error,
        next_retry_at=row.next_retry_at,
        gateway_reference=row.gateway_reference,
        charged_at=row.charged_at,
        waived_at=row.waived_at,
        waived_by=row.waived_by,
        waived_reason=row.waived_reason,
    )
