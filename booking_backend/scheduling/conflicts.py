"""
Conflict detection between a candidate booking window and a stylist's ledger.

Only bookings holding the stylist's time (PENDING, CONFIRMED, IN_PROGRESS)
count. Windows are half-open, so back-to-back bookings are fine.
"""

from collections.abc import Iterable
from datetime import date, time

from sqlalchemy.orm import Session

from booking_backend.models.booking import ACTIVE_STATUSES, Booking
from booking_backend.scheduling.intervals import intervals_overlap

ACTIVE_STATUS_VALUES = sorted(status.value for status in ACTIVE_STATUSES)


def load_active_bookings(
    db: Session,
    provider_id: int,
    date_from: date,
    date_to: date | None = None,
    lock: bool = False,
) -> list[Booking]:
    query = db.query(Booking).filter(
        Booking.provider_id == provider_id,
        Booking.date >= date_from,
        Booking.date <= (date_to or date_from),
        Booking.status.in_(ACTIVE_STATUS_VALUES),
    )
    if lock:
        query = query.with_for_update().populate_existing()

    return query.order_by(Booking.date.asc(), Booking.start_time.asc()).all()


def find_conflict(
    bookings: Iterable[Booking],
    start_time: time,
    end_time: time,
    exclude_booking_id: int | None = None,
) -> Booking | None:
    for booking in bookings:
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        if not booking.is_active:
            continue
        if intervals_overlap(start_time, end_time, booking.start_time, booking.end_time):
            return booking
    return None


def has_conflict(
    db: Session,
    provider_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    exclude_booking_id: int | None = None,
    lock: bool = False,
) -> bool:
    bookings = load_active_bookings(db, provider_id, booking_date, lock=lock)
    return find_conflict(bookings, start_time, end_time, exclude_booking_id) is not None
