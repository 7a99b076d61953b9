from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from booking_backend.core import config


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sessions are handed across FastAPI's threadpool and the notification workers.
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        echo=config.DATABASE_ECHO,
        pool_pre_ping=not database_url.startswith("sqlite"),
        connect_args=connect_args,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_booking_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _add_missing_columns(bind: Engine, table_name: str, migration_steps: list[tuple[str, str]]) -> bool:
    inspector = inspect(bind)

    if table_name not in inspector.get_table_names():
        return False

    existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

    with bind.begin() as connection:
        for column_name, statement in migration_steps:
            if column_name not in existing_columns:
                connection.execute(text(statement))

    return True


def ensure_availability_schema(bind: Engine | None = None) -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        bind = bind or engine
        migration_steps = [
            ('is_active', 'ALTER TABLE availability_rules ADD COLUMN is_active BOOLEAN DEFAULT TRUE'),
            ('deleted_at', 'ALTER TABLE availability_rules ADD COLUMN deleted_at TIMESTAMP'),
        ]

        if _add_missing_columns(bind, 'availability_rules', migration_steps):
            with bind.begin() as connection:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_availability_rules_provider_day '
                        'ON availability_rules(provider_id, day_of_week, start_time)'
                    )
                )

        _availability_schema_checked = True


def ensure_booking_schema(bind: Engine | None = None) -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        bind = bind or engine
        migration_steps = [
            ('address', 'ALTER TABLE bookings ADD COLUMN address VARCHAR'),
            ('city', 'ALTER TABLE bookings ADD COLUMN city VARCHAR'),
            ('notes', 'ALTER TABLE bookings ADD COLUMN notes VARCHAR'),
            ('total_price', 'ALTER TABLE bookings ADD COLUMN total_price NUMERIC(10, 2)'),
            ('cancellation_reason', 'ALTER TABLE bookings ADD COLUMN cancellation_reason VARCHAR'),
            ('updated_at', 'ALTER TABLE bookings ADD COLUMN updated_at TIMESTAMP'),
        ]

        if _add_missing_columns(bind, 'bookings', migration_steps):
            with bind.begin() as connection:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_bookings_provider_date '
                        'ON bookings(provider_id, date, start_time)'
                    )
                )
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_bookings_client_date ON bookings(client_id, date)')
                )

        _booking_schema_checked = True
