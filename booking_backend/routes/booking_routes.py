from datetime import date, datetime, time
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import actor_for, get_current_user, require_roles
from booking_backend.core import config
from booking_backend.database import get_db
from booking_backend.models.booking import Booking, BookingStatus
from booking_backend.models.user import ROLE_ADMIN, ROLE_CLIENT, ROLE_STYLIST, User
from booking_backend.routes.http_errors import ensure_database_ready, translate_errors
from booking_backend.scheduling.service import SchedulingService, get_scheduling_service

router = APIRouter(tags=['bookings'])

MIN_ADDRESS_LENGTH = 5
MIN_CITY_LENGTH = 2
MAX_CANCELLATION_REASON_LENGTH = 300


def _normalize_notes(value: str | None, max_length: int) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'Notes must be {max_length} characters or fewer.')

    return normalized


class CreateBookingRequest(BaseModel):
    provider_id: int
    service_id: int
    date: date
    start_time: time
    address: str
    city: str
    notes: str | None = None

    @field_validator('start_time')
    @classmethod
    def truncate_to_minutes(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)

    @field_validator('address')
    @classmethod
    def validate_address(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) < MIN_ADDRESS_LENGTH:
            raise ValueError(f'Address must be at least {MIN_ADDRESS_LENGTH} characters.')
        return normalized

    @field_validator('city')
    @classmethod
    def validate_city(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) < MIN_CITY_LENGTH:
            raise ValueError(f'City must be at least {MIN_CITY_LENGTH} characters.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value, config.MAX_BOOKING_NOTES_LENGTH)


class RescheduleBookingRequest(BaseModel):
    date: date
    start_time: time

    @field_validator('start_time')
    @classmethod
    def truncate_to_minutes(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)


class CancelBookingRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_notes(value, MAX_CANCELLATION_REASON_LENGTH)


class BookingResponse(BaseModel):
    id: int
    provider_id: int
    client_id: int
    service_id: int
    date: date
    start_time: time
    end_time: time
    status: BookingStatus
    total_price: Decimal | None = None
    address: str | None = None
    city: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


def to_booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse.model_validate(booking)


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def request_booking(
    data: CreateBookingRequest,
    current_user: User = Depends(require_roles(ROLE_CLIENT)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        booking = scheduling.request_booking(
            db,
            provider_id=data.provider_id,
            client_id=current_user.id,
            service_id=data.service_id,
            booking_date=data.date,
            start_time=data.start_time,
            address=data.address,
            city=data.city,
            notes=data.notes,
        )
        return to_booking_response(booking)


@router.get('/mine', response_model=list[BookingResponse])
def list_my_bookings(
    current_user: User = Depends(require_roles(ROLE_CLIENT)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        return [to_booking_response(booking) for booking in scheduling.list_client_bookings(db, current_user.id)]


@router.get('/provider', response_model=list[BookingResponse])
def list_provider_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias='status'),
    current_user: User = Depends(require_roles(ROLE_STYLIST)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        bookings = scheduling.list_provider_bookings(db, current_user.id, status=status_filter)
        return [to_booking_response(booking) for booking in bookings]


@router.get('/{booking_id}', response_model=BookingResponse)
def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        return to_booking_response(scheduling.get_booking(db, booking_id, actor_for(current_user)))


@router.patch('/{booking_id}/schedule', response_model=BookingResponse)
def reschedule_booking(
    booking_id: int,
    data: RescheduleBookingRequest,
    current_user: User = Depends(require_roles(ROLE_CLIENT)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        booking = scheduling.reschedule_booking(
            db,
            booking_id,
            actor_for(current_user),
            booking_date=data.date,
            start_time=data.start_time,
        )
        return to_booking_response(booking)


@router.post('/{booking_id}/confirm', response_model=BookingResponse)
def confirm_booking(
    booking_id: int,
    current_user: User = Depends(require_roles(ROLE_STYLIST, ROLE_ADMIN)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        return to_booking_response(scheduling.confirm_booking(db, booking_id, actor_for(current_user)))


@router.post('/{booking_id}/start', response_model=BookingResponse)
def start_booking(
    booking_id: int,
    current_user: User = Depends(require_roles(ROLE_STYLIST, ROLE_ADMIN)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        return to_booking_response(scheduling.start_booking(db, booking_id, actor_for(current_user)))


@router.post('/{booking_id}/complete', response_model=BookingResponse)
def complete_booking(
    booking_id: int,
    current_user: User = Depends(require_roles(ROLE_STYLIST, ROLE_ADMIN)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        return to_booking_response(scheduling.complete_booking(db, booking_id, actor_for(current_user)))


@router.post('/{booking_id}/no-show', response_model=BookingResponse)
def mark_no_show(
    booking_id: int,
    current_user: User = Depends(require_roles(ROLE_STYLIST, ROLE_ADMIN)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        return to_booking_response(scheduling.mark_no_show(db, booking_id, actor_for(current_user)))


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    data: CancelBookingRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    reason = data.reason if data else None
    with translate_errors(db):
        return to_booking_response(scheduling.cancel_booking(db, booking_id, actor_for(current_user), reason=reason))
