"""Persistence for weekly schedule templates and per-date overrides."""

import logging
from datetime import date, time
from typing import Iterable

from sqlalchemy.orm import Session, selectinload

from booking_backend.core import config
from booking_backend.core.clock import current_time
from booking_backend.core.errors import ScheduleInUse, ValidationError
from booking_backend.models.appointment import ACTIVE_STATUSES, Appointment
from booking_backend.models.schedule import AvailabilityOverride, BreakInterval, ScheduleTemplate
from booking_backend.scheduling.slots import (
    DateOverride,
    DaySchedule,
    Slot,
    TimeWindow,
    check_schedule_invariants,
    find_slot,
    generate_slots,
    to_minutes,
)

logger = logging.getLogger(__name__)

MIN_SLOT_DURATION_MINUTES = 15
MAX_SLOT_DURATION_MINUTES = 180
MAX_BREAK_INTERVALS = 4
MIN_BREAK_GAP_MINUTES = 15


def to_day_schedule(template: ScheduleTemplate) -> DaySchedule:
    return DaySchedule(
        day_of_week=template.day_of_week,
        start_time=template.start_time,
        end_time=template.end_time,
        slot_duration_minutes=template.slot_duration_minutes,
        breaks=tuple(
            TimeWindow(start=interval.start_time, end=interval.end_time)
            for interval in sorted(template.break_intervals, key=lambda item: item.start_time)
        ),
        is_active=bool(template.is_active),
    )


def to_date_override(override: AvailabilityOverride) -> DateOverride:
    custom_window = None
    if override.custom_start_time is not None and override.custom_end_time is not None:
        custom_window = TimeWindow(start=override.custom_start_time, end=override.custom_end_time)

    return DateOverride(
        override_date=override.override_date,
        is_blocked=bool(override.is_blocked),
        custom_window=custom_window,
        slot_duration_minutes=override.slot_duration_minutes,
    )


def validate_slot_duration(slot_duration_minutes: int) -> None:
    if not MIN_SLOT_DURATION_MINUTES <= slot_duration_minutes <= MAX_SLOT_DURATION_MINUTES:
        raise ValidationError(
            f'Slot duration must be between {MIN_SLOT_DURATION_MINUTES} and {MAX_SLOT_DURATION_MINUTES} minutes.'
        )


def validate_day_schedule(schedule: DaySchedule) -> DaySchedule:
    """Apply the write-time rules on top of the structural invariants.

    Returns a copy whose breaks are sorted by start time.
    """
    check_schedule_invariants(schedule)
    validate_slot_duration(schedule.slot_duration_minutes)

    if len(schedule.breaks) > MAX_BREAK_INTERVALS:
        raise ValidationError(f'Maximum {MAX_BREAK_INTERVALS} break times allowed per day.')

    sorted_breaks = tuple(sorted(schedule.breaks, key=lambda item: item.start))
    for current, following in zip(sorted_breaks, sorted_breaks[1:]):
        if to_minutes(following.start) - to_minutes(current.end) < MIN_BREAK_GAP_MINUTES:
            raise ValidationError(f'Minimum {MIN_BREAK_GAP_MINUTES} minutes gap required between break times.')

    return DaySchedule(
        day_of_week=schedule.day_of_week,
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        slot_duration_minutes=schedule.slot_duration_minutes,
        breaks=sorted_breaks,
        is_active=schedule.is_active,
    )


def list_templates(db: Session, practitioner_id: str) -> list[ScheduleTemplate]:
    return db.query(ScheduleTemplate).options(
        selectinload(ScheduleTemplate.break_intervals),
    ).filter(
        ScheduleTemplate.practitioner_id == practitioner_id,
    ).order_by(ScheduleTemplate.day_of_week.asc()).all()


def load_day_schedules(db: Session, practitioner_id: str) -> list[DaySchedule]:
    return [to_day_schedule(template) for template in list_templates(db, practitioner_id)]


def list_override_rows(
    db: Session,
    practitioner_id: str,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[AvailabilityOverride]:
    query = db.query(AvailabilityOverride).filter(AvailabilityOverride.practitioner_id == practitioner_id)
    if from_date is not None:
        query = query.filter(AvailabilityOverride.override_date >= from_date)
    if to_date is not None:
        query = query.filter(AvailabilityOverride.override_date <= to_date)
    return query.order_by(AvailabilityOverride.override_date.asc()).all()


def load_overrides(db: Session, practitioner_id: str, from_date: date, to_date: date) -> list[DateOverride]:
    return [to_date_override(row) for row in list_override_rows(db, practitioner_id, from_date, to_date)]


def _active_appointments(db: Session, practitioner_id: str, from_date: date) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.practitioner_id == practitioner_id,
        Appointment.appointment_date >= from_date,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).all()


def _ensure_bookings_keep_slots(
    practitioner_id: str,
    appointments: Iterable[Appointment],
    schedules: list[DaySchedule],
    overrides: list[DateOverride],
) -> None:
    """Refuse a schedule change that leaves a live booking off the new slot grid.

    A booking survives only if the proposed schedule still generates a slot
    starting at the booking's start and ending no earlier than the booking.
    """
    stranded: list[Appointment] = []
    slots_by_date: dict[date, list[Slot]] = {}
    for appointment in appointments:
        target_date = appointment.appointment_date
        if target_date not in slots_by_date:
            slots_by_date[target_date] = generate_slots(
                schedules,
                overrides,
                target_date,
                [],
                default_slot_duration_minutes=config.DEFAULT_SLOT_DURATION_MINUTES,
            )
        slot = find_slot(slots_by_date[target_date], appointment.start_time)
        if slot is None or appointment.end_time > slot.end_time:
            stranded.append(appointment)

    if stranded:
        logger.info(
            'Schedule change for practitioner %s refused: %s booking(s) affected',
            practitioner_id,
            len(stranded),
        )
        raise ScheduleInUse(
            f'Cannot change availability: {len(stranded)} booked appointment(s) '
            f'would no longer match the schedule, starting {stranded[0].appointment_date.isoformat()}.'
        )


def _check_weekday_change(
    db: Session,
    practitioner_id: str,
    day_of_week: int,
    replacement: DaySchedule | None,
    today: date,
) -> None:
    affected = [
        appointment for appointment in _active_appointments(db, practitioner_id, today)
        if appointment.appointment_date.weekday() == day_of_week
    ]
    if not affected:
        return

    schedules = [item for item in load_day_schedules(db, practitioner_id) if item.day_of_week != day_of_week]
    if replacement is not None:
        schedules.append(replacement)
    overrides = [to_date_override(row) for row in list_override_rows(db, practitioner_id, today)]
    _ensure_bookings_keep_slots(practitioner_id, affected, schedules, overrides)


def _check_date_change(
    db: Session,
    practitioner_id: str,
    override_date: date,
    replacement: DateOverride | None,
    today: date,
) -> None:
    if override_date < today:
        return
    affected = [
        appointment for appointment in _active_appointments(db, practitioner_id, override_date)
        if appointment.appointment_date == override_date
    ]
    if not affected:
        return

    overrides = [replacement] if replacement is not None else []
    _ensure_bookings_keep_slots(practitioner_id, affected, load_day_schedules(db, practitioner_id), overrides)


def upsert_template(
    db: Session,
    practitioner_id: str,
    schedule: DaySchedule,
    today: date | None = None,
) -> ScheduleTemplate:
    schedule = validate_day_schedule(schedule)
    _check_weekday_change(db, practitioner_id, schedule.day_of_week, schedule, today or current_time().date())

    template = db.query(ScheduleTemplate).filter(
        ScheduleTemplate.practitioner_id == practitioner_id,
        ScheduleTemplate.day_of_week == schedule.day_of_week,
    ).first()

    if template is None:
        template = ScheduleTemplate(practitioner_id=practitioner_id, day_of_week=schedule.day_of_week)
        db.add(template)

    template.start_time = schedule.start_time
    template.end_time = schedule.end_time
    template.slot_duration_minutes = schedule.slot_duration_minutes
    template.is_active = schedule.is_active
    template.break_intervals = [
        BreakInterval(start_time=item.start, end_time=item.end) for item in schedule.breaks
    ]

    db.commit()
    db.refresh(template)
    logger.info('Saved schedule template for practitioner %s day %s', practitioner_id, schedule.day_of_week)
    return template


def delete_template(db: Session, practitioner_id: str, day_of_week: int, today: date | None = None) -> bool:
    template = db.query(ScheduleTemplate).filter(
        ScheduleTemplate.practitioner_id == practitioner_id,
        ScheduleTemplate.day_of_week == day_of_week,
    ).first()

    if template is None:
        return False

    _check_weekday_change(db, practitioner_id, day_of_week, None, today or current_time().date())

    db.delete(template)
    db.commit()
    return True


def upsert_override(
    db: Session,
    practitioner_id: str,
    override: DateOverride,
    reason: str | None = None,
    today: date | None = None,
) -> AvailabilityOverride:
    if not override.is_blocked and override.custom_window is None:
        raise ValidationError('An override must either block the date or define a custom window.')
    if override.custom_window is not None:
        if override.custom_window.start >= override.custom_window.end:
            raise ValidationError('Start time must be before end time.')
    if override.slot_duration_minutes is not None:
        validate_slot_duration(override.slot_duration_minutes)

    _check_date_change(db, practitioner_id, override.override_date, override, today or current_time().date())

    row = db.query(AvailabilityOverride).filter(
        AvailabilityOverride.practitioner_id == practitioner_id,
        AvailabilityOverride.override_date == override.override_date,
    ).first()

    if row is None:
        row = AvailabilityOverride(practitioner_id=practitioner_id, override_date=override.override_date)
        db.add(row)

    custom_start: time | None = override.custom_window.start if override.custom_window else None
    custom_end: time | None = override.custom_window.end if override.custom_window else None

    row.is_blocked = override.is_blocked
    row.custom_start_time = None if override.is_blocked else custom_start
    row.custom_end_time = None if override.is_blocked else custom_end
    row.slot_duration_minutes = override.slot_duration_minutes
    row.reason = reason

    db.commit()
    db.refresh(row)
    logger.info('Saved availability override for practitioner %s on %s', practitioner_id, override.override_date)
    return row


def delete_override(db: Session, practitioner_id: str, override_date: date, today: date | None = None) -> bool:
    row = db.query(AvailabilityOverride).filter(
        AvailabilityOverride.practitioner_id == practitioner_id,
        AvailabilityOverride.override_date == override_date,
    ).first()

    if row is None:
        return False

    _check_date_change(db, practitioner_id, override_date, None, today or current_time().date())

    db.delete(row)
    db.commit()
    return True
