"""
Slot generation.

Turns a practitioner's weekly schedule into the discrete, bookable slots of a
single date. Everything here is pure: callers load templates, overrides and
appointments, and this module only computes. Times are compared as minutes
since midnight so break arithmetic never crosses into datetime territory.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from booking_backend.core.errors import ValidationError
from booking_backend.models.appointment import AppointmentStatus

CLOCK_TIME_PATTERN = re.compile(r'^([01]?[0-9]|2[0-3]):([0-5][0-9])$')


@dataclass(frozen=True)
class TimeWindow:
    start: time
    end: time


@dataclass(frozen=True)
class DaySchedule:
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    breaks: tuple[TimeWindow, ...] = ()
    is_active: bool = True


@dataclass(frozen=True)
class DateOverride:
    override_date: date
    is_blocked: bool = False
    custom_window: Optional[TimeWindow] = None
    slot_duration_minutes: Optional[int] = None


@dataclass(frozen=True)
class WorkingWindow:
    start_minute: int
    end_minute: int
    slot_duration_minutes: int
    breaks: tuple[tuple[int, int], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Slot:
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    is_available: bool
    is_booked: bool


def parse_clock_time(value: str, field_name: str = 'time') -> time:
    """Parse ``HH:MM`` (24h) into a ``time``."""
    match = CLOCK_TIME_PATTERN.match((value or '').strip())
    if not match:
        raise ValidationError(f'Invalid {field_name} format. Use HH:MM (e.g., 09:00).')
    return time(int(match.group(1)), int(match.group(2)))


def format_clock_time(value: time) -> str:
    return value.strftime('%H:%M')


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def overlaps(start: int, end: int, other_start: int, other_end: int) -> bool:
    """Half-open interval test: touching boundaries do not overlap."""
    return start < other_end and end > other_start


def check_schedule_invariants(schedule: DaySchedule) -> None:
    if not 0 <= schedule.day_of_week <= 6:
        raise ValidationError('Day of week must be between 0 (Monday) and 6 (Sunday).')
    _check_window(schedule.start_time, schedule.end_time, schedule.slot_duration_minutes, schedule.breaks)


def _check_window(start: time, end: time, slot_duration_minutes: int, breaks: Iterable[TimeWindow]) -> None:
    if start >= end:
        raise ValidationError('Start time must be before end time.')
    if slot_duration_minutes is None or slot_duration_minutes <= 0:
        raise ValidationError('Slot duration must be a positive number of minutes.')

    previous_end: Optional[time] = None
    for break_window in sorted(breaks, key=lambda item: item.start):
        if break_window.start >= break_window.end:
            raise ValidationError('Break start time must be before break end time.')
        if break_window.start < start or break_window.end > end:
            raise ValidationError('Break times must be within working hours.')
        if previous_end is not None and break_window.start < previous_end:
            raise ValidationError('Break times cannot overlap.')
        previous_end = break_window.end


def _find_schedule(schedules: Iterable[DaySchedule], day_of_week: int) -> Optional[DaySchedule]:
    for schedule in schedules:
        if schedule.day_of_week == day_of_week and schedule.is_active:
            return schedule
    return None


def _find_override(overrides: Iterable[DateOverride], target_date: date) -> Optional[DateOverride]:
    for override in overrides:
        if override.override_date == target_date:
            return override
    return None


def _break_minutes(breaks: Iterable[TimeWindow]) -> tuple[tuple[int, int], ...]:
    return tuple(sorted((to_minutes(item.start), to_minutes(item.end)) for item in breaks))


def _clip_breaks(breaks: Iterable[TimeWindow], window: TimeWindow) -> list[TimeWindow]:
    clipped = []
    for item in breaks:
        start = max(item.start, window.start)
        end = min(item.end, window.end)
        if start < end:
            clipped.append(TimeWindow(start=start, end=end))
    return clipped


def resolve_working_window(
    schedules: Iterable[DaySchedule],
    overrides: Iterable[DateOverride],
    target_date: date,
    default_slot_duration_minutes: int = 30,
) -> Optional[WorkingWindow]:
    """Return the window slots are cut from, or ``None`` when the date is unavailable.

    An override for the date wins over the weekly template. A custom override
    window keeps the weekday's slot duration, and the weekday's breaks are
    clipped to the window.
    """
    schedules = list(schedules)
    schedule = _find_schedule(schedules, target_date.weekday())
    override = _find_override(overrides, target_date)

    if override is not None and override.is_blocked:
        return None

    if override is not None and override.custom_window is not None:
        window = override.custom_window
        duration = (
            override.slot_duration_minutes
            or (schedule.slot_duration_minutes if schedule else None)
            or default_slot_duration_minutes
        )
        breaks = _clip_breaks(schedule.breaks if schedule else (), window)
        _check_window(window.start, window.end, duration, breaks)
        return WorkingWindow(
            start_minute=to_minutes(window.start),
            end_minute=to_minutes(window.end),
            slot_duration_minutes=duration,
            breaks=_break_minutes(breaks),
        )

    if schedule is None:
        return None

    check_schedule_invariants(schedule)
    return WorkingWindow(
        start_minute=to_minutes(schedule.start_time),
        end_minute=to_minutes(schedule.end_time),
        slot_duration_minutes=schedule.slot_duration_minutes,
        breaks=_break_minutes(schedule.breaks),
    )


def booked_start_minutes(existing_appointments: Iterable, target_date: date) -> set[int]:
    """Start minutes held by non-cancelled appointments on ``target_date``."""
    return {
        to_minutes(appointment.start_time)
        for appointment in existing_appointments
        if appointment.appointment_date == target_date
        and appointment.status != AppointmentStatus.CANCELLED.value
    }


def generate_slots(
    schedules: Iterable[DaySchedule],
    overrides: Iterable[DateOverride],
    target_date: date,
    existing_appointments: Iterable,
    default_slot_duration_minutes: int = 30,
) -> list[Slot]:
    """
    Generate the ordered slot list for one date.

    Candidates start at the window start and advance by the slot duration
    until the next candidate would end after the window. Candidates that
    overlap a break are discarded; the rest are flagged booked when a
    non-cancelled appointment starts at the same time.
    """
    window = resolve_working_window(schedules, overrides, target_date, default_slot_duration_minutes)
    if window is None:
        return []

    booked = booked_start_minutes(existing_appointments, target_date)
    duration = window.slot_duration_minutes
    slots: list[Slot] = []

    cursor = window.start_minute
    while cursor + duration <= window.end_minute:
        slot_end = cursor + duration
        if not any(overlaps(cursor, slot_end, break_start, break_end) for break_start, break_end in window.breaks):
            is_booked = cursor in booked
            slots.append(
                Slot(
                    date=target_date,
                    start_time=from_minutes(cursor),
                    end_time=from_minutes(slot_end),
                    duration_minutes=duration,
                    is_available=not is_booked,
                    is_booked=is_booked,
                )
            )
        cursor = slot_end

    return slots


def find_slot(slots: Iterable[Slot], start_time: time) -> Optional[Slot]:
    for slot in slots:
        if slot.start_time == start_time:
            return slot
    return None


def next_available_slot(slots: Iterable[Slot]) -> Optional[Slot]:
    for slot in slots:
        if slot.is_available:
            return slot
    return None


def drop_elapsed_slots(slots: Iterable[Slot], now: datetime, lead_minutes: int = 0) -> list[Slot]:
    """Remove slots that start before ``now`` plus the booking lead time."""
    earliest_start = now + timedelta(minutes=lead_minutes)
    return [
        slot for slot in slots
        if datetime.combine(slot.date, slot.start_time) >= earliest_start
    ]
