"""
Scheduling facade used by the HTTP layer.

Composes availability rules, slot generation, conflict checks and the
booking lifecycle. Time comes from an injected clock so behaviour around the
lead time and the horizon can be pinned in tests.
"""

import logging
import time as time_module
from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from functools import lru_cache

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from booking_backend.core.config import SchedulingSettings
from booking_backend.models.availability import AvailabilityRule
from booking_backend.models.booking import Booking, BookingStatus
from booking_backend.models.service import Service
from booking_backend.models.user import User
from booking_backend.notifications.dispatcher import NotificationDispatcher, NotificationEvent
from booking_backend.notifications.email import BookingEmailNotifier
from booking_backend.scheduling import availability
from booking_backend.scheduling.conflicts import find_conflict, load_active_bookings
from booking_backend.scheduling.errors import (
    NotFoundError,
    PermissionDeniedError,
    RangeTooLargeError,
    SlotUnavailableError,
    ValidationError,
)
from booking_backend.scheduling.intervals import add_minutes, day_of_week, normalize_time
from booking_backend.scheduling.locks import LedgerLocks, lock_provider_row
from booking_backend.scheduling.slots import SlotGenerator, validate_date_range, validate_duration
from booking_backend.scheduling.state_machine import (
    Actor,
    BookingStateMachine,
    ensure_can_view,
    load_booking_for_update,
)

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = 'This slot was just booked by someone else. Please pick another time.'


class SchedulingService:
    def __init__(
        self,
        settings: SchedulingSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
        dispatcher: NotificationDispatcher | None = None,
        locks: LedgerLocks | None = None,
        sleep: Callable[[float], None] = time_module.sleep,
    ):
        self.settings = settings or SchedulingSettings()
        self.clock = clock
        self.dispatcher = dispatcher
        self.locks = locks or LedgerLocks()
        self.sleep = sleep
        self.state_machine = BookingStateMachine(dispatcher=dispatcher, clock=clock)

    # Availability rules

    def get_rules_for_provider(self, db: Session, provider_id: int, active_only: bool = False) -> list[AvailabilityRule]:
        return availability.get_rules_for_provider(db, provider_id, active_only=active_only)

    def add_rule(self, db: Session, provider_id: int, day: int, start_time: time, end_time: time) -> AvailabilityRule:
        return availability.add_rule(db, provider_id, day, start_time, end_time)

    def update_rule(
        self,
        db: Session,
        provider_id: int,
        rule_id: int,
        day: int,
        start_time: time,
        end_time: time,
    ) -> AvailabilityRule:
        return availability.update_rule(db, provider_id, rule_id, day, start_time, end_time)

    def toggle_rule(self, db: Session, provider_id: int, rule_id: int) -> AvailabilityRule:
        return availability.toggle_rule(db, provider_id, rule_id)

    def remove_rule(self, db: Session, provider_id: int, rule_id: int) -> None:
        availability.remove_rule(db, provider_id, rule_id, now=self.clock())

    # Slots

    def list_available_slots(
        self,
        db: Session,
        provider_id: int,
        service_id: int,
        date_from: date,
        date_to: date,
    ) -> SlotGenerator:
        validate_date_range(date_from, date_to, self.settings.max_advance_days)

        self._get_provider(db, provider_id)
        service = self._get_service(db, provider_id, service_id)

        return SlotGenerator(
            rules_by_weekday=availability.get_active_rules_by_weekday(db, provider_id),
            bookings=load_active_bookings(db, provider_id, date_from, date_to),
            duration_minutes=service.duration_minutes,
            date_from=date_from,
            date_to=date_to,
            now=self.clock(),
            settings=self.settings,
        )

    # Bookings

    def request_booking(
        self,
        db: Session,
        provider_id: int,
        client_id: int,
        service_id: int,
        booking_date: date,
        start_time: time,
        address: str | None = None,
        city: str | None = None,
        notes: str | None = None,
    ) -> Booking:
        start_time = normalize_time(start_time)
        self._validate_start(booking_date, start_time)

        self._get_provider(db, provider_id)
        service = self._get_service(db, provider_id, service_id)
        duration = validate_duration(service.duration_minutes, self.settings.max_service_duration_minutes)
        end_time = add_minutes(start_time, duration)
        self._ensure_within_availability(db, provider_id, booking_date, start_time, end_time)

        def create() -> Booking:
            self._ensure_free(db, provider_id, booking_date, start_time, end_time)
            booking = Booking(
                provider_id=provider_id,
                client_id=client_id,
                service_id=service.id,
                date=booking_date,
                start_time=start_time,
                end_time=end_time,
                status=BookingStatus.PENDING.value,
                total_price=service.price,
                address=address,
                city=city,
                notes=notes,
                created_at=self.clock(),
            )
            db.add(booking)
            db.commit()
            return booking

        booking = self._run_critical_section(db, provider_id, booking_date, create)
        db.refresh(booking)

        logger.info(
            'Booking %s requested by client %s with stylist %s on %s at %s',
            booking.id,
            client_id,
            provider_id,
            booking_date.isoformat(),
            start_time.strftime('%H:%M'),
        )
        self.state_machine.notify(booking.id, NotificationEvent.BOOKING_REQUESTED)
        return booking

    def reschedule_booking(
        self,
        db: Session,
        booking_id: int,
        actor: Actor,
        booking_date: date,
        start_time: time,
    ) -> Booking:
        start_time = normalize_time(start_time)
        self._validate_start(booking_date, start_time)

        booking = db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError('Booking not found.')
        if not actor.is_client_of(booking):
            raise PermissionDeniedError('Only the client who booked can change the date.')

        service = self._get_service(db, booking.provider_id, booking.service_id)
        end_time = add_minutes(start_time, validate_duration(
            service.duration_minutes,
            self.settings.max_service_duration_minutes,
        ))
        self._ensure_within_availability(db, booking.provider_id, booking_date, start_time, end_time)

        def move() -> Booking:
            locked = load_booking_for_update(db, booking_id)
            if locked.booking_status != BookingStatus.PENDING:
                raise ValidationError('Only pending bookings can be rescheduled.')
            self._ensure_free(db, locked.provider_id, booking_date, start_time, end_time, exclude_booking_id=locked.id)
            locked.date = booking_date
            locked.start_time = start_time
            locked.end_time = end_time
            locked.updated_at = self.clock()
            db.commit()
            return locked

        booking = self._run_critical_section(db, booking.provider_id, booking_date, move)
        db.refresh(booking)

        logger.info('Booking %s moved to %s at %s', booking.id, booking_date.isoformat(), start_time.strftime('%H:%M'))
        self.state_machine.notify(booking.id, NotificationEvent.BOOKING_RESCHEDULED)
        return booking

    def confirm_booking(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        return self.state_machine.confirm(db, booking_id, actor)

    def start_booking(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        return self.state_machine.start(db, booking_id, actor)

    def complete_booking(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        return self.state_machine.complete(db, booking_id, actor)

    def mark_no_show(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        return self.state_machine.mark_no_show(db, booking_id, actor)

    def cancel_booking(self, db: Session, booking_id: int, actor: Actor, reason: str | None = None) -> Booking:
        return self.state_machine.cancel(db, booking_id, actor, reason=reason)

    def get_booking(self, db: Session, booking_id: int, actor: Actor) -> Booking:
        booking = db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError('Booking not found.')
        ensure_can_view(booking, actor)
        return booking

    def list_client_bookings(self, db: Session, client_id: int) -> list[Booking]:
        return db.query(Booking).filter(
            Booking.client_id == client_id,
        ).order_by(Booking.date.desc(), Booking.start_time.desc()).all()

    def list_provider_bookings(
        self,
        db: Session,
        provider_id: int,
        status: BookingStatus | None = None,
    ) -> list[Booking]:
        query = db.query(Booking).filter(Booking.provider_id == provider_id)
        if status is not None:
            query = query.filter(Booking.status == status.value)
        return query.order_by(Booking.date.desc(), Booking.start_time.desc()).all()

    # Internals

    def _validate_start(self, booking_date: date, start_time: time) -> None:
        now = self.clock()
        if booking_date > now.date() + timedelta(days=self.settings.max_advance_days):
            raise RangeTooLargeError(
                f'Bookings cannot be made more than {self.settings.max_advance_days} days in advance.'
            )
        earliest_start = now + timedelta(hours=self.settings.min_lead_time_hours)
        if datetime.combine(booking_date, start_time) < earliest_start:
            raise ValidationError(
                f'Bookings must be made at least {self.settings.min_lead_time_hours} hours in advance.'
            )

    def _get_provider(self, db: Session, provider_id: int) -> User:
        provider = db.get(User, provider_id)
        if provider is None or not provider.is_stylist or not provider.is_active:
            raise NotFoundError('This stylist is not available.')
        return provider

    def _get_service(self, db: Session, provider_id: int, service_id: int) -> Service:
        service = db.get(Service, service_id)
        if service is None:
            raise NotFoundError('Service not found.')
        if service.provider_id != provider_id:
            raise ValidationError('This service is not offered by this stylist.')
        return service

    def _ensure_within_availability(
        self,
        db: Session,
        provider_id: int,
        booking_date: date,
        start_time: time,
        end_time: time,
    ) -> None:
        rules = availability.get_active_rules_by_weekday(db, provider_id).get(day_of_week(booking_date), [])
        if not any(rule.start_time <= start_time and end_time <= rule.end_time for rule in rules):
            raise SlotUnavailableError("The requested time is outside the stylist's availability.")

    def _ensure_free(
        self,
        db: Session,
        provider_id: int,
        booking_date: date,
        start_time: time,
        end_time: time,
        exclude_booking_id: int | None = None,
    ) -> None:
        lock_provider_row(db, provider_id)
        bookings = load_active_bookings(db, provider_id, booking_date, lock=True)
        if find_conflict(bookings, start_time, end_time, exclude_booking_id) is not None:
            raise SlotUnavailableError(SLOT_TAKEN_MESSAGE)

    def _run_critical_section(
        self,
        db: Session,
        provider_id: int,
        booking_date: date,
        operation: Callable[[], Booking],
    ) -> Booking:
        max_attempts = self.settings.lock_max_attempts
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            with self.locks.hold(provider_id, booking_date):
                try:
                    return operation()
                except SlotUnavailableError:
                    db.rollback()
                    logger.info('Stylist %s already busy on %s, request rejected', provider_id, booking_date)
                    raise
                except IntegrityError as exc:
                    db.rollback()
                    logger.info('Concurrent booking won the slot for stylist %s on %s', provider_id, booking_date)
                    raise SlotUnavailableError(SLOT_TAKEN_MESSAGE) from exc
                except OperationalError as exc:
                    db.rollback()
                    last_error = exc
                    logger.warning(
                        'Contention on stylist %s ledger for %s (attempt %s/%s): %s',
                        provider_id,
                        booking_date,
                        attempt,
                        max_attempts,
                        exc,
                    )
                except Exception:
                    db.rollback()
                    raise

            if attempt < max_attempts:
                self.sleep(self.settings.lock_retry_delay_seconds * attempt)

        raise SlotUnavailableError(SLOT_TAKEN_MESSAGE) from last_error


@lru_cache(maxsize=None)
def get_scheduling_service() -> SchedulingService:
    dispatcher = NotificationDispatcher(handlers=[BookingEmailNotifier()])
    return SchedulingService(dispatcher=dispatcher)
