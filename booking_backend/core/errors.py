"""Error taxonomy of the scheduling engine and its HTTP translation."""

from fastapi import HTTPException, status


class SchedulingError(Exception):
    """Base class for every rule violation the engine reports."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = 'scheduling_error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Malformed input or schedule misconfiguration. Never retried."""

    code = 'validation_error'


class NotPermitted(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'not_permitted'


class AppointmentNotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'appointment_not_found'


class SlotUnavailable(SchedulingError):
    """The slot is booked or outside computed availability; the caller should re-query."""

    status_code = status.HTTP_409_CONFLICT
    code = 'slot_unavailable'


class Conflict(SchedulingError):
    """Another booking won the race for the same slot at commit time."""

    status_code = status.HTTP_409_CONFLICT
    code = 'booking_conflict'


class ScheduleInUse(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = 'schedule_in_use'


class InvalidTransition(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = 'invalid_transition'


class CancellationWindowClosed(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = 'cancellation_window_closed'


class TransientStoreError(SchedulingError):
    """The persistence layer could not be reached. The only retryable class."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = 'store_unavailable'


def to_http_exception(exc: SchedulingError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={'code': exc.code, 'message': exc.message},
    )
