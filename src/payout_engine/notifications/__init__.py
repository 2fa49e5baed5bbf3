"""Notification events and dispatch.

Usage:
    from payout_engine.notifications import NotificationDispatcher, FeeChargeFailed

    dispatcher = NotificationDispatcher()
    dispatcher.on(FeeChargeFailed, lambda e: alert(e.professional_id))
"""

from payout_engine.notifications.dispatcher import (
    LoggingNotifier,
    NotificationDispatcher,
    Notifier,
    RecordingNotifier,
    default_dispatcher,
)
from payout_engine.notifications.types import (
    ConfirmationAutoResolved,
    ConfirmationReminder,
    ConfirmationRequested,
    CycleSummaryReady,
    FeeChargeFailed,
    FeeChargeRetryScheduled,
    FeeChargeSucceeded,
    FeeChargeWaived,
    NotificationCategory,
    NotificationEvent,
)

__all__ = [
    "ConfirmationAutoResolved",
    "ConfirmationReminder",
    "ConfirmationRequested",
    "CycleSummaryReady",
    "FeeChargeFailed",
    "FeeChargeRetryScheduled",
    "FeeChargeSucceeded",
    "FeeChargeWaived",
    "LoggingNotifier",
    "NotificationCategory",
    "NotificationDispatcher",
    "NotificationEvent",
    "Notifier",
    "RecordingNotifier",
    "default_dispatcher",
]
