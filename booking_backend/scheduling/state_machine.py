"""
Booking lifecycle.

    PENDING ──> CONFIRMED ──> IN_PROGRESS ──> COMPLETED
       │            │    └──────────────────────┘
       │            ├──> NO_SHOW
       └────────────┴──> CANCELLED

COMPLETED, CANCELLED and NO_SHOW are terminal. Every status change goes
through :class:`BookingStateMachine`; a committed change is followed by a
best-effort notification.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from booking_backend.models.booking import Booking, BookingStatus
from booking_backend.models.user import ROLE_ADMIN, ROLE_CLIENT, ROLE_STYLIST
from booking_backend.notifications.dispatcher import NotificationDispatcher, NotificationEvent
from booking_backend.scheduling.errors import InvalidTransitionError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    }),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
}

TRANSITION_EVENTS = {
    BookingStatus.CONFIRMED: NotificationEvent.BOOKING_CONFIRMED,
    BookingStatus.IN_PROGRESS: NotificationEvent.BOOKING_STARTED,
    BookingStatus.COMPLETED: NotificationEvent.BOOKING_COMPLETED,
    BookingStatus.CANCELLED: NotificationEvent.BOOKING_CANCELLED,
    BookingStatus.NO_SHOW: NotificationEvent.BOOKING_NO_SHOW,
}


@dataclass(frozen=True)
class Actor:
    """The user on whose behalf an operation runs."""

    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def is_provider_of(self, booking: Booking) -> bool:
        return self.role == ROLE_STYLIST and booking.provider_id == self.user_id

    def is_client_of(self, booking: Booking) -> bool:
        return self.role == ROLE_CLIENT and booking.client_id == self.user_id


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def ensure_can_view(booking: Booking, actor: Actor) -> None:
    if not (actor.is_admin or actor.is_provider_of(booking) or actor.is_client_of(booking)):
        raise PermissionDeniedError('You are not allowed to access this booking.')


def _ensure_provider(booking: Booking, actor: Actor) -> None:
    if not (actor.is_admin or actor.is_provider_of(booking)):
        raise PermissionDeniedError('Only the stylist of this booking can change its status.')


def _ensure_party(booking: Booking, actor: Actor) -> None:
    if not (actor.is_admin or actor.is_provider_of(booking) or actor.is_client_of(booking)):
        raise PermissionDeniedError('Only the client or the stylist of this booking can cancel it.')


def load_booking_for_update(db: Session, booking_id: int) -> Booking:
    booking = (
        db.query(Booking)
        .filter(Booking.id == booking_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if booking is None:
        raise NotFoundError('Booking not found.')
    return booking


class BookingStateMachine:
    def __init__(
        self,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.dispatcher = dispatcher
        self.clock = clock

    def confirm(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        return self._transition(db, booking_id, actor, BookingStatus.CONFIRMED, _ensure_provider)

    def start(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        return self._transition(db, booking_id, actor, BookingStatus.IN_PROGRESS, _ensure_provider)

    def complete(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        return self._transition(db, booking_id, actor, BookingStatus.COMPLETED, _ensure_provider)

    def mark_no_show(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        return self._transition(db, booking_id, actor, BookingStatus.NO_SHOW, _ensure_provider)

    def cancel(self, db: Session, booking_id: int, actor: Actor, reason: str | None = None) -> Booking:
        return self._transition(db, booking_id, actor, BookingStatus.CANCELLED, _ensure_party, reason=reason)

    def notify(self, booking_id: int, event: NotificationEvent) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch(booking_id, event)
        except Exception:
            logger.exception('Could not dispatch %s for booking %s', event.value, booking_id)

    def _transition(
        self,
        db: Session,
        booking_id: int,
        actor: Actor,
        target: BookingStatus,
        authorize: Callable[[Booking, Actor], None],
        reason: str | None = None,
    ) -> Booking:
        try:
            booking = load_booking_for_update(db, booking_id)
            authorize(booking, actor)

            current = booking.booking_status
            ensure_transition(current, target)

            booking.status = target.value
            booking.updated_at = self.clock()
            if reason is not None:
                booking.cancellation_reason = reason
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(booking)
        logger.info(
            'Booking %s moved from %s to %s by user %s',
            booking.id,
            current.value,
            target.value,
            actor.user_id,
        )
        self.notify(booking.id, TRANSITION_EVENTS[target])
        return booking
