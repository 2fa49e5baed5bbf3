"""Tests for the SQLAlchemy data store."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import OperationalError

from payout_engine.errors import DataIntegrityError, TransientStoreError
from payout_engine.models import EarningRow
from payout_engine.services.cycle_calculator import cycle_containing
from payout_engine.state_machine import (
    ConfirmationStatus,
    EarningStatus,
    FeeChargeStatus,
)
from payout_engine.store.sql import SqlDataStore
from payout_engine.types import Confirmation, Earning, FeeCharge
from tests.conftest import FIXED_NOW, utc


def make_confirmation(session_id: str, professional_id: str = "pro-1", **overrides) -> Confirmation:
    end = overrides.pop("end", utc(2024, 1, 3, 10))
    cycle = cycle_containing(end)
    values = {
        "confirmation_id": uuid4(),
        "session_id": session_id,
        "professional_id": professional_id,
        "cycle_id": cycle.cycle_id,
        "status": ConfirmationStatus.PENDING,
        "resolution_deadline": cycle.cutoff,
        "created_at": utc(2024, 1, 3, 12),
    }
    values.update(overrides)
    return Confirmation(**values)


def make_earning(confirmation: Confirmation, fee: str = "5.00") -> Earning:
    fee_amount = Decimal(fee)
    gross = fee_amount * 5
    return Earning(
        earning_id=uuid4(),
        confirmation_id=confirmation.confirmation_id,
        session_id=confirmation.session_id,
        professional_id=confirmation.professional_id,
        cycle_id=confirmation.cycle_id,
        gross_amount=gross,
        platform_fee_rate=Decimal("0.20"),
        platform_fee_amount=fee_amount,
        net_amount=gross - fee_amount,
        status=EarningStatus.PENDING_CHARGE,
        auto_resolved=False,
        created_at=utc(2024, 1, 4),
    )


def make_charge(professional_id: str, cycle_id: str, total: str = "5.00", count: int = 1) -> FeeCharge:
    return FeeCharge(
        fee_charge_id=uuid4(),
        professional_id=professional_id,
        cycle_id=cycle_id,
        total_fee_amount=Decimal(total),
        earnings_count=count,
        status=FeeChargeStatus.PENDING,
        attempt_count=0,
        created_at=FIXED_NOW,
    )


@pytest.fixture
def earning_in_store(store, data) -> Earning:
    """One session, confirmed, with an unbilled earning."""
    session_id = data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10))
    confirmation = make_confirmation(session_id, status=ConfirmationStatus.CONFIRMED)
    store.insert_confirmation(confirmation)
    earning = make_earning(confirmation)
    store.insert_earning(earning)
    return earning


class TestSessions:
    """Reading booking-side sessions."""

    def test_awaiting_confirmation_filters(self, store, data):
        """Only completed, ended, unconfirmed sessions are returned."""
        ready = data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10))
        data.add_session(utc(2024, 1, 3, 11), utc(2024, 1, 3, 12), completed=False)
        data.add_session(utc(2024, 1, 9, 9), utc(2024, 1, 9, 10))  # ends after as_of
        confirmed = data.add_session(utc(2024, 1, 4, 9), utc(2024, 1, 4, 10))
        store.insert_confirmation(make_confirmation(confirmed))

        sessions = store.sessions_awaiting_confirmation(FIXED_NOW, limit=100)

        assert [s.session_id for s in sessions] == [ready]
        assert sessions[0].hourly_rate == Decimal("25.00")
        assert sessions[0].end_time.tzinfo is not None

    def test_awaiting_confirmation_resumes_after_cursor(self, store, data):
        """Sessions come in (end_time, session_id) order; `after` skips up to the key."""
        first = data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10), session_id="a")
        tie = data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10), session_id="b")
        last = data.add_session(utc(2024, 1, 4, 9), utc(2024, 1, 4, 10), session_id="c")

        page = store.sessions_awaiting_confirmation(FIXED_NOW, limit=1)
        assert [s.session_id for s in page] == [first]

        rest = store.sessions_awaiting_confirmation(
            FIXED_NOW, limit=10, after=(page[0].end_time, page[0].session_id)
        )
        assert [s.session_id for s in rest] == [tie, last]

    def test_get_session_missing(self, store):
        assert store.get_session("nope") is None


class TestConfirmations:
    """Confirmation inserts and transitions."""

    def test_insert_is_idempotent_per_session(self, store, data):
        """A second confirmation for the same session is ignored."""
        session_id = data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10))
        first = make_confirmation(session_id)

        assert store.insert_confirmation(first) is True
        assert store.insert_confirmation(make_confirmation(session_id)) is False
        assert store.get_confirmation(first.confirmation_id) == first

    def test_insert_for_unknown_session(self, store):
        """A dangling session reference is a data integrity problem."""
        with pytest.raises(DataIntegrityError) as exc_info:
            store.insert_confirmation(make_confirmation("ghost"))

        assert exc_info.value.record_id == "ghost"

    def test_transition_is_conditional(self, store, data):
        """Only the first transition out of PENDING wins."""
        session_id = data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10))
        confirmation = make_confirmation(session_id)
        store.insert_confirmation(confirmation)

        first = store.transition_confirmation(
            confirmation.confirmation_id,
            from_statuses=[ConfirmationStatus.PENDING],
            to_status=ConfirmationStatus.CONFIRMED,
            at=utc(2024, 1, 5),
        )
        second = store.transition_confirmation(
            confirmation.confirmation_id,
            from_statuses=[ConfirmationStatus.PENDING],
            to_status=ConfirmationStatus.AUTO_RESOLVED,
            at=FIXED_NOW,
        )

        stored = store.get_confirmation(confirmation.confirmation_id)
        assert (first, second) == (True, False)
        assert stored.status == ConfirmationStatus.CONFIRMED
        assert stored.resolved_at == utc(2024, 1, 5)

    def test_pending_due(self, store, data):
        """Due means PENDING with the deadline at or before as_of."""
        due = make_confirmation(data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10)))
        later = make_confirmation(
            data.add_session(utc(2024, 1, 9, 9), utc(2024, 1, 9, 10)), end=utc(2024, 1, 9, 10)
        )
        store.insert_confirmation(due)
        store.insert_confirmation(later)

        assert store.pending_confirmations_due(utc(2024, 1, 8, 14), 10) == []
        assert [c.confirmation_id for c in store.pending_confirmations_due(utc(2024, 1, 8, 15), 10)] == [
            due.confirmation_id
        ]

    def test_deadline_window(self, store, data):
        """Window is (start, end] on the deadline, pending only."""
        soon = make_confirmation(data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10)))
        store.insert_confirmation(soon)
        start = soon.resolution_deadline - timedelta(days=1)

        assert [
            c.confirmation_id
            for c in store.pending_confirmations_deadline_between(
                start, soon.resolution_deadline, 10
            )
        ] == [soon.confirmation_id]
        assert store.pending_confirmations_deadline_between(
            soon.resolution_deadline, soon.resolution_deadline + timedelta(days=3), 10
        ) == []
        assert store.pending_confirmations_deadline_between(
            start,
            soon.resolution_deadline,
            10,
            after=(soon.resolution_deadline, soon.confirmation_id),
        ) == []

    def test_mark_reminded_once_per_threshold(self, store, data):
        """A reminder is recorded once per days-remaining value, never going back up."""
        confirmation = make_confirmation(data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10)))
        store.insert_confirmation(confirmation)
        cid = confirmation.confirmation_id

        assert store.mark_confirmation_reminded(cid, 3) is True
        assert store.mark_confirmation_reminded(cid, 3) is False
        assert store.mark_confirmation_reminded(cid, 1) is True
        assert store.mark_confirmation_reminded(cid, 3) is False
        assert store.get_confirmation(cid).reminded_days_remaining == 1


class TestEarnings:
    """Earning inserts and reads."""

    def test_insert_is_idempotent_per_confirmation(self, store, earning_in_store):
        confirmation = store.get_confirmation(earning_in_store.confirmation_id)

        assert store.insert_earning(make_earning(confirmation)) is False
        assert store.earnings_for_cycle("2024-01-01") == [earning_in_store]

    def test_insert_for_unknown_confirmation(self, store, data):
        session_id = data.add_session(utc(2024, 1, 3, 9), utc(2024, 1, 3, 10))
        orphan = make_earning(make_confirmation(session_id))

        with pytest.raises(DataIntegrityError):
            store.insert_earning(orphan)

    def test_unbilled_queries(self, store, earning_in_store):
        assert store.unbilled_cycle_ids() == ["2024-01-01"]
        assert store.unbilled_earnings("2024-01-01") == [earning_in_store]
        assert store.resolved_confirmations_without_earning(10) == []

    def test_inconsistent_row_rejected_on_read(self, store, session_factory, earning_in_store):
        """A stored earning whose gross != net + fee surfaces as DataIntegrityError."""
        with session_factory.begin() as session:
            row = session.get(EarningRow, earning_in_store.earning_id)
            row.net_amount = Decimal("1.00")

        with pytest.raises(DataIntegrityError):
            store.earnings_for_cycle("2024-01-01")


class TestFeeCharges:
    """Fee charge creation, claiming and outcomes."""

    def test_insert_links_earnings(self, store, earning_in_store):
        charge = make_charge("pro-1", "2024-01-01")

        assert store.insert_fee_charge(charge, [earning_in_store.earning_id]) is True
        assert store.earnings_for_cycle("2024-01-01")[0].fee_charge_id == charge.fee_charge_id
        assert store.unbilled_cycle_ids() == []

    def test_one_charge_per_professional_cycle(self, store, earning_in_store):
        """A second charge for the same pair is not created."""
        store.insert_fee_charge(make_charge("pro-1", "2024-01-01"), [earning_in_store.earning_id])

        assert store.insert_fee_charge(
            make_charge("pro-1", "2024-01-01"), [earning_in_store.earning_id]
        ) is False
        assert store.count_fee_charges_by_status() == {"pending": 1}

    def test_partial_link_rolls_back(self, store, earning_in_store):
        """If not every earning can be linked, the charge is not kept."""
        charge = make_charge("pro-1", "2024-01-01", count=2)

        with pytest.raises(DataIntegrityError):
            store.insert_fee_charge(charge, [earning_in_store.earning_id, uuid4()])

        assert store.get_fee_charge(charge.fee_charge_id) is None
        assert store.unbilled_earnings("2024-01-01") == [earning_in_store]

    def test_claim_is_exclusive(self, store, earning_in_store):
        """Two claims of the same charge: exactly one wins."""
        charge = make_charge("pro-1", "2024-01-01")
        store.insert_fee_charge(charge, [earning_in_store.earning_id])

        first = store.claim_fee_charge(charge.fee_charge_id, at=FIXED_NOW)
        second = store.claim_fee_charge(charge.fee_charge_id, at=FIXED_NOW)

        assert first is not None
        assert first.status == FeeChargeStatus.PROCESSING
        assert first.attempt_count == 1
        assert first.last_attempt_at == FIXED_NOW
        assert second is None
        assert store.claimable_fee_charges(10) == []

    def test_complete_marks_earnings_charged(self, store, earning_in_store):
        charge = make_charge("pro-1", "2024-01-01")
        store.insert_fee_charge(charge, [earning_in_store.earning_id])
        store.claim_fee_charge(charge.fee_charge_id, at=FIXED_NOW)

        assert store.complete_fee_charge(charge.fee_charge_id, reference="REF-1", at=FIXED_NOW)

        stored = store.get_fee_charge(charge.fee_charge_id)
        assert stored.status == FeeChargeStatus.SUCCEEDED
        assert stored.gateway_reference == "REF-1"
        assert stored.charged_at == FIXED_NOW
        assert store.earnings_for_cycle("2024-01-01")[0].status == EarningStatus.CHARGED
        # Already terminal
        assert store.complete_fee_charge(charge.fee_charge_id, reference="REF-2", at=FIXED_NOW) is False

    def test_retrying_charge_claimable_when_due(self, store, earning_in_store):
        """A RETRYING charge is claimed only once its next_retry_at is reached."""
        charge = make_charge("pro-1", "2024-01-01")
        store.insert_fee_charge(charge, [earning_in_store.earning_id])
        store.claim_fee_charge(charge.fee_charge_id, at=FIXED_NOW)
        retry_at = FIXED_NOW + timedelta(days=1)
        store.fail_fee_charge(
            charge.fee_charge_id,
            error="card_declined",
            next_status=FeeChargeStatus.RETRYING,
            next_retry_at=retry_at,
        )

        assert store.claimable_fee_charges(10) == []
        assert store.get_fee_charge(charge.fee_charge_id).next_retry_at == retry_at
        assert store.retrying_fee_charges(10, due_by=retry_at - timedelta(seconds=1)) == []
        assert [c.fee_charge_id for c in store.retrying_fee_charges(10, due_by=retry_at)] == [
            charge.fee_charge_id
        ]
        assert store.retrying_fee_charges(10, attempted_before=FIXED_NOW - timedelta(hours=1)) == []

        early = retry_at - timedelta(hours=2)
        assert store.claim_fee_charge(charge.fee_charge_id, at=early, due_by=early) is None

        reclaimed = store.claim_fee_charge(charge.fee_charge_id, at=retry_at, due_by=retry_at)
        assert reclaimed.attempt_count == 2
        assert reclaimed.next_retry_at is None
        assert reclaimed.last_error == "card_declined"

    def test_waive_moves_unpaid_earnings(self, store, earning_in_store):
        charge = make_charge("pro-1", "2024-01-01")
        store.insert_fee_charge(charge, [earning_in_store.earning_id])

        assert store.waive_fee_charge(
            charge.fee_charge_id, waived_by="ops", reason="goodwill", at=FIXED_NOW
        ) is True
        assert store.waive_fee_charge(
            charge.fee_charge_id, waived_by="ops", reason="again", at=FIXED_NOW
        ) is False

        stored = store.get_fee_charge(charge.fee_charge_id)
        assert stored.status == FeeChargeStatus.WAIVED
        assert (stored.waived_by, stored.waived_reason, stored.waived_at) == ("ops", "goodwill", FIXED_NOW)
        assert store.earnings_for_cycle("2024-01-01")[0].status == EarningStatus.WAIVED
        assert store.claim_fee_charge(charge.fee_charge_id, at=FIXED_NOW) is None

    def test_waive_in_flight_refused(self, store, earning_in_store):
        charge = make_charge("pro-1", "2024-01-01")
        store.insert_fee_charge(charge, [earning_in_store.earning_id])
        store.claim_fee_charge(charge.fee_charge_id, at=FIXED_NOW)

        assert store.waive_fee_charge(
            charge.fee_charge_id, waived_by="ops", reason="x", at=FIXED_NOW
        ) is False
        assert store.earnings_for_cycle("2024-01-01")[0].status == EarningStatus.PENDING_CHARGE

    def test_professional_listing_and_totals(self, store, data, earning_in_store):
        charge = make_charge("pro-1", "2024-01-01", total="5.00")
        store.insert_fee_charge(charge, [earning_in_store.earning_id])
        pro2_session = data.add_session(
            utc(2024, 1, 4, 9), utc(2024, 1, 4, 10), professional_id="pro-2"
        )
        pro2_confirmation = make_confirmation(
            pro2_session, "pro-2", status=ConfirmationStatus.CONFIRMED
        )
        store.insert_confirmation(pro2_confirmation)
        pro2_earning = make_earning(pro2_confirmation, fee="7.25")
        store.insert_earning(pro2_earning)
        other = make_charge("pro-2", "2024-01-01", total="7.25")
        store.insert_fee_charge(other, [pro2_earning.earning_id])
        store.claim_fee_charge(other.fee_charge_id, at=FIXED_NOW)
        store.complete_fee_charge(other.fee_charge_id, reference="R", at=FIXED_NOW)

        assert [c.fee_charge_id for c in store.fee_charges_for_professional("pro-1")] == [
            charge.fee_charge_id
        ]
        assert store.fee_charges_for_professional("pro-1", status=FeeChargeStatus.SUCCEEDED) == []
        assert store.fee_charge_totals() == {
            "pending": (1, Decimal("5.00")),
            "succeeded": (1, Decimal("7.25")),
        }
        assert store.fee_charge_totals(professional_id="pro-2") == {"succeeded": (1, Decimal("7.25"))}
        assert store.fee_charge_totals(cycle_id="2023-12-25") == {}

    def test_terminal_failure_fails_earnings(self, store, earning_in_store):
        charge = make_charge("pro-1", "2024-01-01")
        store.insert_fee_charge(charge, [earning_in_store.earning_id])
        store.claim_fee_charge(charge.fee_charge_id, at=FIXED_NOW)

        store.fail_fee_charge(charge.fee_charge_id, error="x", next_status=FeeChargeStatus.FAILED)

        assert store.get_fee_charge(charge.fee_charge_id).status == FeeChargeStatus.FAILED
        assert store.earnings_for_cycle("2024-01-01")[0].status == EarningStatus.FAILED

    def test_stuck_charges(self, store, earning_in_store):
        charge = make_charge("pro-1", "2024-01-01")
        store.insert_fee_charge(charge, [earning_in_store.earning_id])
        store.claim_fee_charge(charge.fee_charge_id, at=utc(2024, 1, 8, 10))

        assert store.count_stuck_fee_charges(utc(2024, 1, 8, 10)) == 0
        assert store.count_stuck_fee_charges(utc(2024, 1, 8, 12)) == 1
        assert [c.fee_charge_id for c in store.stuck_fee_charges(utc(2024, 1, 8, 12), 10)] == [
            charge.fee_charge_id
        ]

    def test_late_earning_counted(self, store, data, earning_in_store):
        """An earning for an already-billed pair is reported, not linked."""
        store.insert_fee_charge(make_charge("pro-1", "2024-01-01"), [earning_in_store.earning_id])
        late_session = data.add_session(utc(2024, 1, 6, 9), utc(2024, 1, 6, 10))
        late = make_confirmation(late_session, status=ConfirmationStatus.CONFIRMED)
        store.insert_confirmation(late)
        store.insert_earning(make_earning(late))

        assert store.count_unbilled_late_earnings() == 1


class _FlakySessionFactory:
    """Session factory whose first `failures` transactions cannot connect."""

    def __init__(self, real, failures: int):
        self.real = real
        self.failures = failures
        self.attempts = 0

    def begin(self):
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise OperationalError("SELECT 1", {}, Exception("db down"))
        return self.real.begin()


class TestTransientErrors:
    """Retry of transient database failures."""

    def test_recovers_within_attempts(self, session_factory):
        flaky = _FlakySessionFactory(session_factory, failures=2)
        store = SqlDataStore(flaky, retry_attempts=3, retry_pause_seconds=0)

        assert store.ping() is True
        assert flaky.attempts == 3

    def test_gives_up_after_attempts(self, session_factory):
        flaky = _FlakySessionFactory(session_factory, failures=5)
        store = SqlDataStore(flaky, retry_attempts=3, retry_pause_seconds=0)

        with pytest.raises(TransientStoreError) as exc_info:
            store.ping()

        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "ping"
        assert isinstance(exc_info.value.cause, OperationalError)


def test_uuid_round_trip(store, earning_in_store):
    """UUID keys come back as UUID objects."""
    earning = store.earnings_for_cycle("2024-01-01")[0]

    assert isinstance(earning.earning_id, UUID)
    assert isinstance(earning.confirmation_id, UUID)
