"""Payout engine services."""

from payout_engine.services.confirmation_manager import ConfirmationManager
from payout_engine.services.earnings_aggregator import EarningsAggregator, calculate_amounts
from payout_engine.services.fee_charge_processor import FeeChargeProcessor
from payout_engine.services.policies import (
    FeeRatePolicy,
    FixedDailyBackoffPolicy,
    FlatFeeRatePolicy,
    LinearBackoffPolicy,
    ProfessionalOverrideFeeRatePolicy,
    RetryBackoffPolicy,
)
from payout_engine.services.scheduled_run import ScheduledPaymentRun

__all__ = [
    "ConfirmationManager",
    "EarningsAggregator",
    "FeeChargeProcessor",
    "FeeRatePolicy",
    "FixedDailyBackoffPolicy",
    "FlatFeeRatePolicy",
    "LinearBackoffPolicy",
    "ProfessionalOverrideFeeRatePolicy",
    "RetryBackoffPolicy",
    "ScheduledPaymentRun",
    "calculate_amounts",
]
