from datetime import date, time

from booking_backend.scheduling.errors import ValidationError

MINUTES_PER_DAY = 24 * 60


def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    """Half-open overlap test: ``[start_a, end_a)`` against ``[start_b, end_b)``.

    Intervals that only touch (one ends exactly when the other starts) do not
    overlap. Works on anything ordered: ``time``, ``datetime`` or minute counts.
    """
    return start_a < end_b and start_b < end_a


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(minutes: int) -> time:
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise ValidationError('Bookings must start and end on the same day.')
    return time(minutes // 60, minutes % 60)


def add_minutes(value: time, minutes: int) -> time:
    return time_from_minutes(minutes_since_midnight(value) + minutes)


def normalize_time(value: time) -> time:
    return value.replace(second=0, microsecond=0, tzinfo=None)


def day_of_week(value: date) -> int:
    # Sunday=0 .. Saturday=6, while date.weekday() is Monday=0 .. Sunday=6.
    return (value.weekday() + 1) % 7


def validate_time_range(start_time: time, end_time: time) -> None:
    if start_time >= end_time:
        raise ValidationError('End time must be after start time.')


def validate_day_of_week(value: int) -> None:
    if not 0 <= value <= 6:
        raise ValidationError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
