import os
from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from booking_backend.core.config import SchedulingSettings  # noqa: E402
from booking_backend.database import Base  # noqa: E402
from booking_backend.models.availability import AvailabilityRule  # noqa: E402
from booking_backend.models.booking import Booking, BookingStatus  # noqa: E402
from booking_backend.models.service import Service  # noqa: E402
from booking_backend.models.user import ROLE_ADMIN, ROLE_CLIENT, ROLE_STYLIST, User  # noqa: E402
from booking_backend.scheduling.service import SchedulingService  # noqa: E402

# Saturday morning; Monday 2026-03-16 09:00 is exactly 48 hours away.
NOW = datetime(2026, 3, 14, 9, 0)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def dispatch(self, booking_id, event):
        self.events.append((booking_id, event))

    def shutdown(self, wait: bool = True) -> None:
        pass


def make_settings(**overrides) -> SchedulingSettings:
    values = {
        'slot_interval_minutes': 30,
        'min_lead_time_hours': 24,
        'max_advance_days': 60,
        'max_service_duration_minutes': 480,
        'lock_max_attempts': 3,
        'lock_retry_delay_seconds': 0,
    }
    values.update(overrides)
    return SchedulingSettings(**values)


@pytest.fixture
def engine():
    engine = create_engine('sqlite:///:memory:')
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def add_user(db, email: str, role: str, name: str | None = None, is_active: bool = True) -> User:
    user = User(email=email, name=name, role=role, is_active=is_active)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def stylist(db) -> User:
    return add_user(db, 'awa@example.com', ROLE_STYLIST, name='Awa')


@pytest.fixture
def other_stylist(db) -> User:
    return add_user(db, 'fatou@example.com', ROLE_STYLIST, name='Fatou')


@pytest.fixture
def client(db) -> User:
    return add_user(db, 'sophie@example.com', ROLE_CLIENT, name='Sophie')


@pytest.fixture
def other_client(db) -> User:
    return add_user(db, 'ines@example.com', ROLE_CLIENT, name='Ines')


@pytest.fixture
def admin(db) -> User:
    return add_user(db, 'admin@example.com', ROLE_ADMIN)


def add_service(db, provider: User, duration_minutes: int, price: str = '45.00', name: str = 'Box braids') -> Service:
    service = Service(provider_id=provider.id, name=name, duration_minutes=duration_minutes, price=Decimal(price))
    db.add(service)
    db.commit()
    db.refresh(service)
    return service


@pytest.fixture
def long_service(db, stylist) -> Service:
    return add_service(db, stylist, 90)


@pytest.fixture
def hour_service(db, stylist) -> Service:
    return add_service(db, stylist, 60, price='30.00', name='Twists')


def add_rule(db, provider: User, day_of_week: int, start: time, end: time, is_active: bool = True) -> AvailabilityRule:
    rule = AvailabilityRule(
        provider_id=provider.id,
        day_of_week=day_of_week,
        start_time=start,
        end_time=end,
        is_active=is_active,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@pytest.fixture
def monday_morning(db, stylist) -> AvailabilityRule:
    return add_rule(db, stylist, 1, time(9, 0), time(12, 0))


def add_booking(
    db,
    provider: User,
    client: User,
    service: Service,
    booking_date: date,
    start: time,
    end: time,
    status: BookingStatus = BookingStatus.PENDING,
) -> Booking:
    booking = Booking(
        provider_id=provider.id,
        client_id=client.id,
        service_id=service.id,
        date=booking_date,
        start_time=start,
        end_time=end,
        status=status.value,
        total_price=service.price,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def scheduling(clock, dispatcher) -> SchedulingService:
    return SchedulingService(settings=make_settings(), clock=clock, dispatcher=dispatcher, sleep=lambda _: None)


@pytest.fixture
def make_user(db):
    return lambda email, role, **kwargs: add_user(db, email, role, **kwargs)


@pytest.fixture
def make_service(db):
    return lambda provider, duration_minutes, **kwargs: add_service(db, provider, duration_minutes, **kwargs)


@pytest.fixture
def make_rule(db):
    return lambda provider, day_of_week, start, end, **kwargs: add_rule(db, provider, day_of_week, start, end, **kwargs)


@pytest.fixture
def make_booking(db):
    return lambda provider, client, service, booking_date, start, end, **kwargs: add_booking(
        db, provider, client, service, booking_date, start, end, **kwargs
    )
