"""Tests for fee-rate and backoff policies and earning amounts."""

from datetime import timedelta
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from payout_engine.services.earnings_aggregator import calculate_amounts
from payout_engine.services.policies import (
    FixedDailyBackoffPolicy,
    FlatFeeRatePolicy,
    LinearBackoffPolicy,
    ProfessionalOverrideFeeRatePolicy,
)
from payout_engine.types import AppointmentSession
from tests.conftest import utc


def _session(minutes: int = 60, rate: Decimal | None = Decimal("25.00"), fee_rate=None):
    start = utc(2024, 1, 3, 9)
    return AppointmentSession(
        session_id="s1",
        professional_id="pro-1",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        completed=True,
        hourly_rate=rate,
        platform_fee_rate=fee_rate,
    )


class TestFeeRatePolicies:
    """Fee rate selection."""

    def test_flat_rate(self):
        assert FlatFeeRatePolicy().rate_for(_session()) == Decimal("0.20")
        assert FlatFeeRatePolicy(Decimal("0.15")).rate_for(_session()) == Decimal("0.15")

    def test_override_used_when_present(self):
        """A per-professional rate wins over the default."""
        policy = ProfessionalOverrideFeeRatePolicy(Decimal("0.20"))

        assert policy.rate_for(_session(fee_rate=Decimal("0.10"))) == Decimal("0.10")
        assert policy.rate_for(_session()) == Decimal("0.20")

    def test_rate_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            FlatFeeRatePolicy(Decimal("1.5"))
        with pytest.raises(ValueError):
            ProfessionalOverrideFeeRatePolicy().rate_for(_session(fee_rate=Decimal("-0.1")))


class TestBackoffPolicies:
    """Retry spacing."""

    def test_fixed_daily(self):
        policy = FixedDailyBackoffPolicy()

        assert policy.delay_after(1) == timedelta(hours=24)
        assert policy.delay_after(2) == timedelta(hours=24)

    def test_linear_grows_and_caps(self):
        policy = LinearBackoffPolicy(step=timedelta(hours=6), maximum=timedelta(hours=15))

        assert policy.delay_after(1) == timedelta(hours=6)
        assert policy.delay_after(2) == timedelta(hours=12)
        assert policy.delay_after(5) == timedelta(hours=15)


class TestCalculateAmounts:
    """gross = rate x hours; fee = gross x fee rate; net = remainder."""

    def test_one_hour_at_twenty_percent(self):
        assert calculate_amounts(_session(), Decimal("0.20")) == (
            Decimal("25.00"),
            Decimal("5.00"),
            Decimal("20.00"),
        )

    def test_ninety_minutes(self):
        gross, fee, net = calculate_amounts(_session(minutes=90), Decimal("0.20"))

        assert (gross, fee, net) == (Decimal("37.50"), Decimal("7.50"), Decimal("30.00"))

    def test_default_rate_when_session_has_none(self):
        gross, _, _ = calculate_amounts(_session(rate=None), Decimal("0.20"), Decimal("40.00"))

        assert gross == Decimal("40.00")

    def test_half_cent_rounds_up(self):
        """0.125 of a cent-exact gross rounds half up."""
        # 20 minutes at 0.75/h = 0.25; 0.25 * 0.5 = 0.125 -> 0.13
        gross, fee, net = calculate_amounts(
            _session(minutes=20, rate=Decimal("0.75")), Decimal("0.5")
        )

        assert (gross, fee, net) == (Decimal("0.25"), Decimal("0.13"), Decimal("0.12"))

    @given(
        minutes=st.integers(min_value=0, max_value=24 * 60),
        rate=st.decimals(min_value=0, max_value=1000, places=2),
        fee_rate=st.decimals(min_value=0, max_value=1, places=4),
    )
    def test_gross_equals_net_plus_fee(self, minutes, rate, fee_rate):
        """The split always adds back up to the gross."""
        gross, fee, net = calculate_amounts(_session(minutes=minutes, rate=rate), fee_rate)

        assert gross == net + fee
        assert fee >= 0
        assert net >= 0
