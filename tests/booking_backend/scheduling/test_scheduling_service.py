import threading
from datetime import date, time, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from booking_backend.core.config import SchedulingSettings
from booking_backend.database import Base, build_engine
from booking_backend.models.availability import AvailabilityRule
from booking_backend.models.booking import Booking, BookingStatus
from booking_backend.models.service import Service
from booking_backend.models.user import ROLE_CLIENT, ROLE_STYLIST, User
from booking_backend.notifications.dispatcher import NotificationEvent
from booking_backend.scheduling import service as service_module
from booking_backend.scheduling.errors import (
    NotFoundError,
    PermissionDeniedError,
    RangeTooLargeError,
    SlotUnavailableError,
    ValidationError,
)
from booking_backend.scheduling.locks import lock_provider_row
from booking_backend.scheduling.service import SLOT_TAKEN_MESSAGE, SchedulingService
from booking_backend.scheduling.state_machine import Actor

MONDAY = date(2026, 3, 16)


def book(scheduling, db, provider, client, service, start, booking_date=MONDAY, **kwargs):
    return scheduling.request_booking(
        db,
        provider_id=provider.id,
        client_id=client.id,
        service_id=service.id,
        booking_date=booking_date,
        start_time=start,
        address='12 rue des Lilas',
        city='Paris',
        **kwargs,
    )


def as_client(user) -> Actor:
    return Actor(user_id=user.id, role=ROLE_CLIENT)


def as_stylist(user) -> Actor:
    return Actor(user_id=user.id, role=ROLE_STYLIST)


def test_list_available_slots_for_monday_morning(db, scheduling, stylist, long_service, monday_morning) -> None:
    slots = scheduling.list_available_slots(db, stylist.id, long_service.id, MONDAY, MONDAY)

    assert [slot.start_time for slot in slots] == [time(9, 0), time(9, 30), time(10, 0), time(10, 30)]


def test_booked_slot_disappears_from_listing(db, scheduling, stylist, client, long_service, monday_morning) -> None:
    slots = list(scheduling.list_available_slots(db, stylist.id, long_service.id, MONDAY, MONDAY))

    booking = book(scheduling, db, stylist, client, long_service, slots[0].start_time)

    assert (booking.start_time, booking.end_time) == (time(9, 0), time(10, 30))
    remaining = scheduling.list_available_slots(db, stylist.id, long_service.id, MONDAY, MONDAY)
    assert [slot.start_time for slot in remaining] == [time(10, 30)]


def test_every_listed_slot_can_be_booked(db, scheduling, stylist, client, make_service, make_rule) -> None:
    service = make_service(stylist, 75)
    make_rule(stylist, 1, time(9, 0), time(12, 0))
    make_rule(stylist, 1, time(13, 10), time(17, 0))
    make_rule(stylist, 3, time(8, 0), time(20, 0))

    slots = list(scheduling.list_available_slots(db, stylist.id, service.id, MONDAY, MONDAY + timedelta(days=59)))

    assert time(13, 10) in {slot.start_time for slot in slots}
    assert {slot.date.weekday() for slot in slots} == {0, 2}
    for slot in slots[::7]:
        booking = book(scheduling, db, stylist, client, service, slot.start_time, booking_date=slot.date)
        assert (booking.date, booking.start_time, booking.end_time) == (slot.date, slot.start_time, slot.end_time)
        scheduling.cancel_booking(db, booking.id, as_client(client))


def test_list_available_slots_rejects_range_over_horizon(db, scheduling, stylist, long_service) -> None:
    with pytest.raises(RangeTooLargeError):
        scheduling.list_available_slots(db, stylist.id, long_service.id, MONDAY, MONDAY + timedelta(days=61))


def test_list_available_slots_checks_service_owner(db, scheduling, stylist, other_stylist, long_service) -> None:
    with pytest.raises(ValidationError):
        scheduling.list_available_slots(db, other_stylist.id, long_service.id, MONDAY, MONDAY)


def test_list_available_slots_unknown_service(db, scheduling, stylist) -> None:
    with pytest.raises(NotFoundError):
        scheduling.list_available_slots(db, stylist.id, 999, MONDAY, MONDAY)


def test_request_booking_creates_pending_booking(
    db,
    scheduling,
    dispatcher,
    clock,
    stylist,
    client,
    hour_service,
    monday_morning,
) -> None:
    booking = book(scheduling, db, stylist, client, hour_service, time(10, 0), notes='Bring extensions')

    assert booking.status == BookingStatus.PENDING.value
    assert booking.end_time == time(11, 0)
    assert booking.total_price == Decimal('30.00')
    assert booking.address == '12 rue des Lilas'
    assert booking.notes == 'Bring extensions'
    assert booking.created_at == clock()
    assert dispatcher.events == [(booking.id, NotificationEvent.BOOKING_REQUESTED)]


def test_overlapping_request_is_rejected_and_touching_is_accepted(
    db,
    scheduling,
    stylist,
    client,
    other_client,
    hour_service,
    monday_morning,
) -> None:
    book(scheduling, db, stylist, client, hour_service, time(10, 0))

    with pytest.raises(SlotUnavailableError) as exception_info:
        book(scheduling, db, stylist, other_client, hour_service, time(10, 30))

    assert exception_info.value.message == SLOT_TAKEN_MESSAGE
    accepted = book(scheduling, db, stylist, other_client, hour_service, time(11, 0))
    assert (accepted.start_time, accepted.end_time) == (time(11, 0), time(12, 0))


def test_cancelled_booking_frees_its_slot(db, scheduling, stylist, client, other_client, hour_service, monday_morning) -> None:
    first = book(scheduling, db, stylist, client, hour_service, time(10, 0))
    scheduling.cancel_booking(db, first.id, as_client(client))

    second = book(scheduling, db, stylist, other_client, hour_service, time(10, 0))

    assert second.id != first.id
    assert second.status == BookingStatus.PENDING.value


def test_request_outside_availability_is_unavailable(db, scheduling, stylist, client, hour_service, monday_morning) -> None:
    with pytest.raises(SlotUnavailableError):
        book(scheduling, db, stylist, client, hour_service, time(11, 30))

    with pytest.raises(SlotUnavailableError):
        book(scheduling, db, stylist, client, hour_service, time(10, 0), booking_date=MONDAY + timedelta(days=1))


def test_request_inside_lead_time_is_rejected(db, scheduling, clock, stylist, client, hour_service, monday_morning) -> None:
    clock.advance(hours=25)

    with pytest.raises(ValidationError):
        book(scheduling, db, stylist, client, hour_service, time(9, 0))

    assert db.query(Booking).count() == 0


def test_request_at_exact_lead_time_is_accepted(db, scheduling, clock, stylist, client, hour_service, monday_morning) -> None:
    clock.advance(hours=24)

    booking = book(scheduling, db, stylist, client, hour_service, time(9, 0))

    assert booking.start_time == time(9, 0)


def test_request_past_horizon_is_rejected(db, scheduling, stylist, client, hour_service, make_rule) -> None:
    far_monday = MONDAY + timedelta(weeks=9)
    make_rule(stylist, 1, time(9, 0), time(12, 0))

    with pytest.raises(RangeTooLargeError):
        book(scheduling, db, stylist, client, hour_service, time(9, 0), booking_date=far_monday)


def test_request_with_foreign_service_is_rejected(
    db,
    scheduling,
    stylist,
    other_stylist,
    client,
    make_service,
    monday_morning,
) -> None:
    foreign = make_service(other_stylist, 60)

    with pytest.raises(ValidationError):
        book(scheduling, db, stylist, client, foreign, time(9, 0))


def test_request_with_inactive_stylist_is_not_found(db, scheduling, client, make_user, make_service, make_rule) -> None:
    retired = make_user('retired@example.com', ROLE_STYLIST, is_active=False)
    service = make_service(retired, 60)
    make_rule(retired, 1, time(9, 0), time(12, 0))

    with pytest.raises(NotFoundError):
        book(scheduling, db, retired, client, service, time(9, 0))


def test_request_with_client_as_provider_is_not_found(db, scheduling, client, other_client, make_service) -> None:
    service = make_service(client, 60)

    with pytest.raises(NotFoundError):
        book(scheduling, db, client, other_client, service, time(9, 0))


def test_request_rejects_service_longer_than_allowed(
    db,
    scheduling,
    stylist,
    client,
    make_service,
    make_rule,
) -> None:
    marathon = make_service(stylist, 600)
    make_rule(stylist, 1, time(0, 0), time(23, 0))

    with pytest.raises(ValidationError):
        book(scheduling, db, stylist, client, marathon, time(9, 0))


def test_reschedule_moves_a_pending_booking(db, scheduling, dispatcher, stylist, client, hour_service, monday_morning) -> None:
    booking = book(scheduling, db, stylist, client, hour_service, time(10, 0))

    moved = scheduling.reschedule_booking(db, booking.id, as_client(client), MONDAY, time(10, 30))

    assert (moved.start_time, moved.end_time) == (time(10, 30), time(11, 30))
    assert dispatcher.events[-1] == (booking.id, NotificationEvent.BOOKING_RESCHEDULED)


def test_reschedule_into_another_booking_is_unavailable(
    db,
    scheduling,
    stylist,
    client,
    other_client,
    hour_service,
    monday_morning,
) -> None:
    book(scheduling, db, stylist, other_client, hour_service, time(11, 0))
    booking = book(scheduling, db, stylist, client, hour_service, time(9, 0))

    with pytest.raises(SlotUnavailableError):
        scheduling.reschedule_booking(db, booking.id, as_client(client), MONDAY, time(10, 30))

    assert db.get(Booking, booking.id).start_time == time(9, 0)


def test_reschedule_requires_the_booking_client(
    db,
    scheduling,
    stylist,
    client,
    other_client,
    hour_service,
    monday_morning,
) -> None:
    booking = book(scheduling, db, stylist, client, hour_service, time(10, 0))

    with pytest.raises(PermissionDeniedError):
        scheduling.reschedule_booking(db, booking.id, as_client(other_client), MONDAY, time(11, 0))
    with pytest.raises(PermissionDeniedError):
        scheduling.reschedule_booking(db, booking.id, as_stylist(stylist), MONDAY, time(11, 0))


def test_reschedule_of_confirmed_booking_is_rejected(db, scheduling, stylist, client, hour_service, monday_morning) -> None:
    booking = book(scheduling, db, stylist, client, hour_service, time(10, 0))
    scheduling.confirm_booking(db, booking.id, as_stylist(stylist))

    with pytest.raises(ValidationError):
        scheduling.reschedule_booking(db, booking.id, as_client(client), MONDAY, time(11, 0))


def test_reschedule_unknown_booking(db, scheduling, client) -> None:
    with pytest.raises(NotFoundError):
        scheduling.reschedule_booking(db, 31337, as_client(client), MONDAY, time(11, 0))


def test_lifecycle_through_the_facade(db, scheduling, dispatcher, stylist, client, hour_service, monday_morning) -> None:
    booking = book(scheduling, db, stylist, client, hour_service, time(10, 0))
    actor = as_stylist(stylist)

    scheduling.confirm_booking(db, booking.id, actor)
    scheduling.start_booking(db, booking.id, actor)
    done = scheduling.complete_booking(db, booking.id, actor)

    assert done.status == BookingStatus.COMPLETED.value
    assert [event for _, event in dispatcher.events] == [
        NotificationEvent.BOOKING_REQUESTED,
        NotificationEvent.BOOKING_CONFIRMED,
        NotificationEvent.BOOKING_STARTED,
        NotificationEvent.BOOKING_COMPLETED,
    ]


def test_get_booking_checks_visibility(db, scheduling, stylist, client, other_client, hour_service, monday_morning) -> None:
    booking = book(scheduling, db, stylist, client, hour_service, time(10, 0))

    assert scheduling.get_booking(db, booking.id, as_client(client)).id == booking.id
    with pytest.raises(PermissionDeniedError):
        scheduling.get_booking(db, booking.id, as_client(other_client))
    with pytest.raises(NotFoundError):
        scheduling.get_booking(db, 404, as_client(client))


def test_booking_listings_are_newest_first(
    db,
    scheduling,
    stylist,
    client,
    other_client,
    hour_service,
    make_booking,
) -> None:
    make_booking(stylist, client, hour_service, MONDAY, time(9, 0), time(10, 0))
    make_booking(stylist, client, hour_service, MONDAY, time(14, 0), time(15, 0), status=BookingStatus.CONFIRMED)
    make_booking(stylist, other_client, hour_service, MONDAY + timedelta(days=1), time(9, 0), time(10, 0))

    mine = scheduling.list_client_bookings(db, client.id)
    confirmed = scheduling.list_provider_bookings(db, stylist.id, status=BookingStatus.CONFIRMED)

    assert [booking.start_time for booking in mine] == [time(14, 0), time(9, 0)]
    assert len(scheduling.list_provider_bookings(db, stylist.id)) == 3
    assert [booking.start_time for booking in confirmed] == [time(14, 0)]


def test_remove_rule_uses_the_service_clock(db, scheduling, clock, stylist, monday_morning) -> None:
    scheduling.remove_rule(db, stylist.id, monday_morning.id)

    assert db.get(AvailabilityRule, monday_morning.id).deleted_at == clock()


def test_lock_contention_is_retried_then_reported(
    db,
    clock,
    dispatcher,
    stylist,
    client,
    hour_service,
    monday_morning,
    monkeypatch,
) -> None:
    delays = []
    calls = []

    def contended(session, provider_id):
        calls.append(provider_id)
        raise OperationalError('SELECT users FOR UPDATE', {}, Exception('database is locked'))

    monkeypatch.setattr(service_module, 'lock_provider_row', contended)
    scheduling = SchedulingService(
        settings=SchedulingSettings(lock_max_attempts=3, lock_retry_delay_seconds=0.1),
        clock=clock,
        dispatcher=dispatcher,
        sleep=delays.append,
    )

    with pytest.raises(SlotUnavailableError):
        book(scheduling, db, stylist, client, hour_service, time(10, 0))

    assert calls == [stylist.id] * 3
    assert delays == [0.1, 0.2]
    assert db.query(Booking).count() == 0
    assert dispatcher.events == []
    assert len(scheduling.locks) == 0


def test_lock_contention_recovers_on_retry(db, scheduling, stylist, client, hour_service, monday_morning, monkeypatch) -> None:
    attempts = []

    def flaky(session, provider_id):
        attempts.append(provider_id)
        if len(attempts) == 1:
            raise OperationalError('SELECT users FOR UPDATE', {}, Exception('database is locked'))
        return lock_provider_row(session, provider_id)

    monkeypatch.setattr(service_module, 'lock_provider_row', flaky)

    booking = book(scheduling, db, stylist, client, hour_service, time(10, 0))

    assert len(attempts) == 2
    assert booking.status == BookingStatus.PENDING.value


def test_unique_index_backs_up_the_conflict_check(
    db,
    scheduling,
    stylist,
    client,
    other_client,
    hour_service,
    monday_morning,
    monkeypatch,
) -> None:
    book(scheduling, db, stylist, client, hour_service, time(10, 0))
    monkeypatch.setattr(service_module, 'find_conflict', lambda *args, **kwargs: None)

    with pytest.raises(SlotUnavailableError):
        book(scheduling, db, stylist, other_client, hour_service, time(10, 0))

    assert db.query(Booking).count() == 1


def test_concurrent_requests_for_one_slot_yield_one_booking(tmp_path, clock, dispatcher) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with factory() as setup:
        stylist = User(email='awa@example.com', name='Awa', role=ROLE_STYLIST, is_active=True)
        clients = [User(email=f'client{index}@example.com', role=ROLE_CLIENT, is_active=True) for index in range(8)]
        setup.add_all([stylist, *clients])
        setup.commit()
        service = Service(provider_id=stylist.id, name='Box braids', duration_minutes=90, price=Decimal('45.00'))
        setup.add(service)
        setup.add(AvailabilityRule(provider_id=stylist.id, day_of_week=1, start_time=time(9, 0), end_time=time(12, 0)))
        setup.commit()
        stylist_id = stylist.id
        service_id = service.id
        client_ids = [client.id for client in clients]

    scheduling = SchedulingService(
        settings=SchedulingSettings(lock_retry_delay_seconds=0),
        clock=clock,
        dispatcher=dispatcher,
        sleep=lambda _: None,
    )
    barrier = threading.Barrier(len(client_ids))
    outcomes = []
    outcomes_lock = threading.Lock()

    def attempt(client_id, start):
        session = factory()
        try:
            barrier.wait()
            scheduling.request_booking(
                session,
                provider_id=stylist_id,
                client_id=client_id,
                service_id=service_id,
                booking_date=MONDAY,
                start_time=start,
            )
            outcome = 'booked'
        except SlotUnavailableError:
            outcome = 'rejected'
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    starts = [time(9, 0), time(9, 30), time(10, 0), time(9, 0)] * 2
    threads = [threading.Thread(target=attempt, args=args) for args in zip(client_ids, starts)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    try:
        assert sorted(outcomes) == ['booked'] + ['rejected'] * 7
        with factory() as check:
            assert check.query(Booking).count() == 1
        assert len(dispatcher.events) == 1
        assert len(scheduling.locks) == 0
    finally:
        engine.dispose()
