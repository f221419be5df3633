from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import require_practitioner
from booking_backend.core.errors import SchedulingError
from booking_backend.database import get_db
from booking_backend.models.user import User
from booking_backend.routes.common import ClockTime, ensure_database_ready, parse_time_field, translate_error
from booking_backend.scheduling import schedule_store
from booking_backend.scheduling.slots import DateOverride, DaySchedule, TimeWindow

router = APIRouter(tags=['schedule'])


class BreakIntervalRequest(BaseModel):
    start_time: time
    end_time: time

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def validate_clock_time(cls, value):
        return parse_time_field(value, 'break time')


class ScheduleTemplateRequest(BaseModel):
    start_time: time
    end_time: time
    slot_duration_minutes: int = 30
    break_intervals: list[BreakIntervalRequest] = []
    is_active: bool = True

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def validate_clock_time(cls, value):
        return parse_time_field(value)


class AvailabilityOverrideRequest(BaseModel):
    is_blocked: bool = False
    start_time: time | None = None
    end_time: time | None = None
    slot_duration_minutes: int | None = None
    reason: str | None = None

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def validate_clock_time(cls, value):
        if value is None:
            return None
        return parse_time_field(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @model_validator(mode='after')
    def validate_window(self) -> 'AvailabilityOverrideRequest':
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError('A custom window needs both a start time and an end time.')
        return self


class BreakIntervalResponse(BaseModel):
    start_time: ClockTime
    end_time: ClockTime

    class Config:
        from_attributes = True


class ScheduleTemplateResponse(BaseModel):
    id: int
    day_of_week: int
    start_time: ClockTime
    end_time: ClockTime
    slot_duration_minutes: int
    is_active: bool
    break_intervals: list[BreakIntervalResponse]

    class Config:
        from_attributes = True


class AvailabilityOverrideResponse(BaseModel):
    id: int
    override_date: date
    is_blocked: bool
    custom_start_time: ClockTime | None = None
    custom_end_time: ClockTime | None = None
    slot_duration_minutes: int | None = None
    reason: str | None = None

    class Config:
        from_attributes = True


@router.get('/templates', response_model=list[ScheduleTemplateResponse])
def list_templates(
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return schedule_store.list_templates(db, current_user.id)
    except SQLAlchemyError as exc:
        raise translate_error(exc) from exc


@router.put('/templates/{day_of_week}', response_model=ScheduleTemplateResponse)
def save_template(
    data: ScheduleTemplateRequest,
    day_of_week: int = Path(..., ge=0, le=6),
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    schedule = DaySchedule(
        day_of_week=day_of_week,
        start_time=data.start_time,
        end_time=data.end_time,
        slot_duration_minutes=data.slot_duration_minutes,
        breaks=tuple(TimeWindow(start=item.start_time, end=item.end_time) for item in data.break_intervals),
        is_active=data.is_active,
    )

    try:
        return schedule_store.upsert_template(db, current_user.id, schedule)
    except SQLAlchemyError as exc:
        db.rollback()
        raise translate_error(exc) from exc
    except SchedulingError as exc:
        raise translate_error(exc) from exc


@router.delete('/templates/{day_of_week}', status_code=status.HTTP_204_NO_CONTENT)
def remove_template(
    day_of_week: int = Path(..., ge=0, le=6),
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        removed = schedule_store.delete_template(db, current_user.id, day_of_week)
    except SQLAlchemyError as exc:
        db.rollback()
        raise translate_error(exc) from exc
    except SchedulingError as exc:
        raise translate_error(exc) from exc

    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Schedule template not found.',
        )


@router.get('/overrides', response_model=list[AvailabilityOverrideResponse])
def list_overrides(
    from_date: date | None = Query(default=None),
    to_date: date | None = Query(default=None),
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    if from_date and to_date and from_date > to_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='from_date must not be after to_date.',
        )

    ensure_database_ready()

    try:
        return schedule_store.list_override_rows(db, current_user.id, from_date, to_date)
    except SQLAlchemyError as exc:
        raise translate_error(exc) from exc


@router.put('/overrides/{override_date}', response_model=AvailabilityOverrideResponse)
def save_override(
    override_date: date,
    data: AvailabilityOverrideRequest,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    custom_window = None
    if data.start_time is not None and data.end_time is not None:
        custom_window = TimeWindow(start=data.start_time, end=data.end_time)

    override = DateOverride(
        override_date=override_date,
        is_blocked=data.is_blocked,
        custom_window=custom_window,
        slot_duration_minutes=data.slot_duration_minutes,
    )

    try:
        return schedule_store.upsert_override(db, current_user.id, override, reason=data.reason)
    except SQLAlchemyError as exc:
        db.rollback()
        raise translate_error(exc) from exc
    except SchedulingError as exc:
        raise translate_error(exc) from exc


@router.delete('/overrides/{override_date}', status_code=status.HTTP_204_NO_CONTENT)
def remove_override(
    override_date: date,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        removed = schedule_store.delete_override(db, current_user.id, override_date)
    except SQLAlchemyError as exc:
        db.rollback()
        raise translate_error(exc) from exc
    except SchedulingError as exc:
        raise translate_error(exc) from exc

    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Availability override not found.',
        )
