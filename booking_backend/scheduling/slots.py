"""
Bookable slot generation.

Slots are derived, never stored: for every date of the requested range the
active weekly rules of that weekday are walked in steps of the slot interval,
keeping the candidate starts where the whole service fits inside the rule,
that respect the minimum lead time, and that do not overlap an active
booking of the stylist.
"""

from collections import defaultdict
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from booking_backend.core.config import SchedulingSettings
from booking_backend.models.availability import AvailabilityRule
from booking_backend.models.booking import Booking
from booking_backend.scheduling.conflicts import find_conflict
from booking_backend.scheduling.errors import RangeTooLargeError, ValidationError
from booking_backend.scheduling.intervals import day_of_week, minutes_since_midnight, time_from_minutes


@dataclass(frozen=True)
class Slot:
    date: date
    start_time: time
    end_time: time

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, self.end_time)


def validate_date_range(date_from: date, date_to: date, max_advance_days: int) -> None:
    if date_to < date_from:
        raise ValidationError('The end of the range must not be before its start.')
    if (date_to - date_from).days > max_advance_days:
        raise RangeTooLargeError(f'Slots can only be listed for up to {max_advance_days} days at a time.')


def validate_duration(duration_minutes: int | None, max_duration_minutes: int) -> int:
    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationError('Service duration must be a positive number of minutes.')
    if duration_minutes > max_duration_minutes:
        raise ValidationError(f'Service duration cannot exceed {max_duration_minutes} minutes.')
    return duration_minutes


class SlotGenerator:
    """Lazy, restartable sequence of :class:`Slot` for one stylist and service.

    Validation happens on construction, so a bad range fails before anything
    is iterated. Each ``iter()`` walks the range again from the start.
    """

    def __init__(
        self,
        rules_by_weekday: Mapping[int, Sequence[AvailabilityRule]],
        bookings: Iterable[Booking],
        duration_minutes: int,
        date_from: date,
        date_to: date,
        now: datetime,
        settings: SchedulingSettings,
    ):
        validate_date_range(date_from, date_to, settings.max_advance_days)
        self.duration_minutes = validate_duration(duration_minutes, settings.max_service_duration_minutes)
        self.date_from = date_from
        self.date_to = date_to
        self.now = now
        self.settings = settings
        self._rules_by_weekday = {
            weekday: sorted((rule for rule in rules if rule.is_active), key=lambda rule: rule.start_time)
            for weekday, rules in rules_by_weekday.items()
        }
        self._bookings_by_date: dict[date, list[Booking]] = defaultdict(list)
        for booking in bookings:
            self._bookings_by_date[booking.date].append(booking)

    @property
    def earliest_start(self) -> datetime:
        return self.now + timedelta(hours=self.settings.min_lead_time_hours)

    @property
    def last_bookable_date(self) -> date:
        return self.now.date() + timedelta(days=self.settings.max_advance_days)

    def __iter__(self) -> Iterator[Slot]:
        return self._generate()

    def _generate(self) -> Iterator[Slot]:
        earliest_start = self.earliest_start
        last_date = min(self.date_to, self.last_bookable_date)
        current_day = self.date_from

        while current_day <= last_date:
            yield from self._slots_for_day(current_day, earliest_start)
            current_day += timedelta(days=1)

    def _slots_for_day(self, current_day: date, earliest_start: datetime) -> Iterator[Slot]:
        rules = self._rules_by_weekday.get(day_of_week(current_day), [])
        bookings = self._bookings_by_date.get(current_day, [])
        step = self.settings.slot_interval_minutes

        for rule in rules:
            window_end = minutes_since_midnight(rule.end_time)
            candidate = minutes_since_midnight(rule.start_time)

            while candidate + self.duration_minutes <= window_end:
                start_time = time_from_minutes(candidate)
                end_time = time_from_minutes(candidate + self.duration_minutes)
                candidate += step

                if datetime.combine(current_day, start_time) < earliest_start:
                    continue
                if find_conflict(bookings, start_time, end_time) is not None:
                    continue

                yield Slot(date=current_day, start_time=start_time, end_time=end_time)
