"""Booking emails sent through Resend."""

import html
import logging
from collections.abc import Callable

import resend
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.database import SessionLocal
from booking_backend.models.booking import Booking
from booking_backend.models.service import Service
from booking_backend.models.user import User
from booking_backend.notifications.dispatcher import NotificationEvent

logger = logging.getLogger(__name__)

SUBJECTS = {
    NotificationEvent.BOOKING_REQUESTED: 'New booking request - {service}',
    NotificationEvent.BOOKING_CONFIRMED: 'Booking confirmed - {service}',
    NotificationEvent.BOOKING_STARTED: 'Your appointment has started - {service}',
    NotificationEvent.BOOKING_COMPLETED: 'Thank you for your visit - {service}',
    NotificationEvent.BOOKING_CANCELLED: 'Booking cancelled - {service}',
    NotificationEvent.BOOKING_NO_SHOW: 'Missed appointment - {service}',
    NotificationEvent.BOOKING_RESCHEDULED: 'Booking moved - {service}',
}

HEADLINES = {
    NotificationEvent.BOOKING_REQUESTED: 'Your booking request has been sent.',
    NotificationEvent.BOOKING_CONFIRMED: 'Your booking is confirmed!',
    NotificationEvent.BOOKING_STARTED: 'Your appointment is in progress.',
    NotificationEvent.BOOKING_COMPLETED: 'Your appointment is complete.',
    NotificationEvent.BOOKING_CANCELLED: 'Your booking has been cancelled.',
    NotificationEvent.BOOKING_NO_SHOW: 'You were marked as absent for this appointment.',
    NotificationEvent.BOOKING_RESCHEDULED: 'Your booking has a new date.',
}

# The stylist also hears about new and moved requests.
PROVIDER_EVENTS = {NotificationEvent.BOOKING_REQUESTED, NotificationEvent.BOOKING_RESCHEDULED}


def _escape(value) -> str:
    return html.escape(str(value), quote=True)


def render_booking_html(booking: Booking, service: Service, stylist: User, client: User, headline: str) -> str:
    """Build the mail body. Every user-supplied value is HTML-escaped."""
    lines = [
        f'<h2>{_escape(headline)}</h2>',
        f'<p>Hello {_escape(client.name or client.email)},</p>',
        '<ul>',
        f'<li><strong>Stylist:</strong> {_escape(stylist.name or stylist.email)}</li>',
        f'<li><strong>Service:</strong> {_escape(service.name)}</li>',
        f'<li><strong>Date:</strong> {booking.date:%d/%m/%Y}</li>',
        f'<li><strong>Time:</strong> {booking.start_time:%H:%M} - {booking.end_time:%H:%M}</li>',
    ]
    if booking.address:
        location = f'{booking.address}, {booking.city}' if booking.city else booking.address
        lines.append(f'<li><strong>Address:</strong> {_escape(location)}</li>')
    if booking.total_price is not None:
        lines.append(f'<li><strong>Price:</strong> {booking.total_price:.2f} EUR</li>')
    lines.append('</ul>')
    if booking.notes:
        lines.append(f'<p><em>Notes: {_escape(booking.notes)}</em></p>')
    return '\n'.join(lines)


class BookingEmailNotifier:
    """Notification handler that mails the parties of a booking."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        api_key: str = config.RESEND_API_KEY,
        from_address: str = config.EMAIL_FROM_ADDRESS,
    ):
        self.session_factory = session_factory
        self.api_key = api_key
        self.from_address = from_address

    def __call__(self, booking_id: int, event: NotificationEvent) -> None:
        if not self.api_key:
            logger.warning('RESEND_API_KEY not configured, %s email for booking %s not sent', event.value, booking_id)
            return

        db = self.session_factory()
        try:
            booking = db.get(Booking, booking_id)
            if booking is None:
                logger.warning('Booking %s vanished before its %s email was sent', booking_id, event.value)
                return

            service = db.get(Service, booking.service_id)
            stylist = db.get(User, booking.provider_id)
            client = db.get(User, booking.client_id)
            subject = SUBJECTS[event].format(service=service.name)
            html = render_booking_html(booking, service, stylist, client, HEADLINES[event])

            recipients = [client.email]
            if event in PROVIDER_EVENTS:
                recipients.append(stylist.email)
        finally:
            db.close()

        resend.api_key = self.api_key
        response = resend.Emails.send({
            'from': self.from_address,
            'to': recipients,
            'subject': subject,
            'html': html,
        })
        logger.info('Sent %s email for booking %s: %s', event.value, booking_id, response)
