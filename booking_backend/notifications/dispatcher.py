"""
Fire-and-forget delivery of booking events.

The scheduling core calls :meth:`NotificationDispatcher.dispatch` after a
transition has been committed. Delivery runs on a small thread pool; handler
failures are logged and never reach the caller.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum

from booking_backend.core import config

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    BOOKING_REQUESTED = 'booking.requested'
    BOOKING_CONFIRMED = 'booking.confirmed'
    BOOKING_STARTED = 'booking.started'
    BOOKING_COMPLETED = 'booking.completed'
    BOOKING_CANCELLED = 'booking.cancelled'
    BOOKING_NO_SHOW = 'booking.no_show'
    BOOKING_RESCHEDULED = 'booking.rescheduled'


NotificationHandler = Callable[[int, NotificationEvent], None]


class NotificationDispatcher:
    def __init__(
        self,
        handlers: list[NotificationHandler] | None = None,
        max_workers: int = config.NOTIFICATION_WORKERS,
    ):
        self._handlers: list[NotificationHandler] = list(handlers or [])
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='notifications')

    def register(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    def dispatch(self, booking_id: int, event: NotificationEvent) -> Future | None:
        try:
            return self._executor.submit(self.deliver, booking_id, event)
        except RuntimeError:
            logger.exception('Notification %s for booking %s dropped: dispatcher is shut down', event.value, booking_id)
            return None

    def deliver(self, booking_id: int, event: NotificationEvent) -> None:
        for handler in self._handlers:
            try:
                handler(booking_id, event)
            except Exception:
                logger.exception(
                    'Notification handler %r failed for %s on booking %s',
                    handler,
                    event.value,
                    booking_id,
                )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
