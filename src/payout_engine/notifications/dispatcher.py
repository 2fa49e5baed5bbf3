"""Notification dispatcher.

The dispatcher provides:
- Handler registration with type filtering
- Category-based routing
- Error isolation (handler failures don't break other handlers or the run)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

from payout_engine.notifications.types import NotificationCategory, NotificationEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=NotificationEvent)


@runtime_checkable
class Notifier(Protocol):
    """Protocol for notification handlers."""

    def __call__(self, event: NotificationEvent) -> None:
        """Handle a notification event."""
        ...


@dataclass
class HandlerRegistration:
    """Registration of a notifier."""

    handler: Notifier
    event_types: set[str] | None  # None = all events
    categories: set[NotificationCategory] | None  # None = all categories


class NotificationDispatcher:
    """Publishes notification events to registered notifiers.

    Usage:
        dispatcher = NotificationDispatcher()
        dispatcher.on(FeeChargeFailed, alert_billing_team)
        dispatcher.on_category(NotificationCategory.CONFIRMATION, push_to_app)

        dispatcher.emit(event)
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(self, event_type: type[T] | list[type[T]], handler: Notifier) -> None:
        """Register handler for specific event type(s)."""
        if isinstance(event_type, list):
            types = {t.__name__ for t in event_type}
        else:
            types = {event_type.__name__}
        self._handlers.append(HandlerRegistration(handler, types, None))

    def on_category(
        self,
        category: NotificationCategory | list[NotificationCategory],
        handler: Notifier,
    ) -> None:
        """Register handler for event category(ies)."""
        cats = set(category) if isinstance(category, list) else {category}
        self._handlers.append(HandlerRegistration(handler, None, cats))

    def on_all(self, handler: Notifier) -> None:
        """Register handler for all events."""
        self._handlers.append(HandlerRegistration(handler, None, None))

    def off(self, handler: Notifier) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def emit(self, event: NotificationEvent) -> list[Exception]:
        """Deliver an event to all matching handlers.

        Returns the exceptions raised by handlers; they are logged, never
        propagated.
        """
        errors: list[Exception] = []
        event_type = event.event_type
        event_category = event.category

        for reg in self._handlers:
            if reg.event_types and event_type not in reg.event_types:
                continue
            if reg.categories and event_category not in reg.categories:
                continue

            try:
                reg.handler(event)
            except Exception as e:
                logger.exception(
                    "Notifier %s failed for event %s",
                    reg.handler,
                    event_type,
                )
                errors.append(e)

        return errors


class LoggingNotifier:
    """Writes every notification to the log.

    Default handler when no delivery transport is wired in.
    """

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def __call__(self, event: NotificationEvent) -> None:
        logger.log(
            self.level,
            "notification %s for professional %s: %s",
            event.event_type,
            event.professional_id,
            event.to_json(),
        )


class RecordingNotifier:
    """Keeps every notification in memory, for inspection."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def __call__(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[T]) -> list[T]:
        """Recorded events of one type."""
        return [e for e in self.events if isinstance(e, event_type)]


def default_dispatcher() -> NotificationDispatcher:
    """Dispatcher with the logging notifier attached."""
    dispatcher = NotificationDispatcher()
    dispatcher.on_all(LoggingNotifier())
    return dispatcher
