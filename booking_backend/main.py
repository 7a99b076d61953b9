import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking_backend.core import config
from booking_backend.core.logging_config import configure_logging
from booking_backend.database import Base, engine, ensure_availability_schema, ensure_booking_schema
from booking_backend.models import availability, booking, service, user  # noqa: F401
from booking_backend.routes import availability_routes, booking_routes
from booking_backend.scheduling.service import get_scheduling_service

configure_logging()
config.validate_runtime_config()

app = FastAPI(title='Stylist Booking API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_booking_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('shutdown')
def stop_notifications() -> None:
    dispatcher = get_scheduling_service().dispatcher
    if dispatcher is not None:
        dispatcher.shutdown(wait=True)


@app.get('/')
def root():
    return {'status': 'Stylist Booking API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/bookings')
