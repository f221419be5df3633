import logging
from datetime import time
from typing import Annotated

from fastapi import HTTPException, status
from pydantic import PlainSerializer
from sqlalchemy.exc import SQLAlchemyError

from booking_backend.core.errors import SchedulingError, to_http_exception
from booking_backend.database import ensure_appointment_schema, ensure_schedule_schema
from booking_backend.scheduling.slots import format_clock_time, parse_clock_time

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

# Times leave the API as HH:MM.
ClockTime = Annotated[time, PlainSerializer(format_clock_time, return_type=str)]


def ensure_database_ready() -> None:
    try:
        ensure_schedule_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def translate_error(exc: SchedulingError | SQLAlchemyError) -> HTTPException:
    """Map engine and database failures onto the HTTP error the caller sees."""
    if isinstance(exc, SchedulingError):
        return to_http_exception(exc)
    logger.exception('Database error while handling request')
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def parse_time_field(value: str | time, field_name: str = 'time') -> time:
    """Pydantic-friendly ``HH:MM`` parsing: engine errors become ``ValueError``."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return parse_clock_time(value, field_name)
    except SchedulingError as exc:
        raise ValueError(exc.message) from exc
