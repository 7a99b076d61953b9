"""
Error taxonomy raised by the scheduling core.

The route layer translates these into HTTP responses; see
``booking_backend.routes.http_errors``.
"""


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Malformed input: bad time ranges, non-positive durations, unknown references."""


class RangeTooLargeError(SchedulingError):
    """The requested date range or date exceeds the booking horizon."""


class SlotUnavailableError(SchedulingError):
    """The requested slot is taken or outside the stylist's availability."""


class InvalidTransitionError(SchedulingError):
    """A booking status change that the lifecycle does not allow."""

    def __init__(self, current, target):
        current_value = getattr(current, 'value', current)
        target_value = getattr(target, 'value', target)
        super().__init__(f'Cannot move a booking from {current_value} to {target_value}.')
        self.current = current
        self.target = target


class NotFoundError(SchedulingError):
    """A referenced provider, service, rule or booking does not exist."""


class PermissionDeniedError(SchedulingError):
    """The acting user does not own the resource being changed."""
