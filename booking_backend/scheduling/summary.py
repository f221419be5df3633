"""Per-day availability counts over a rolling window."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import ValidationError
from booking_backend.scheduling import ledger, schedule_store
from booking_backend.scheduling.slots import drop_elapsed_slots, generate_slots

MAX_SUMMARY_DAYS = 31


@dataclass(frozen=True)
class DaySummary:
    date: date
    total_slots: int
    available_slots: int
    booked_slots: int


def summarize(
    db: Session,
    practitioner_id: str,
    from_date: date,
    num_days: int,
    now: Optional[datetime] = None,
) -> list[DaySummary]:
    if not 1 <= num_days <= MAX_SUMMARY_DAYS:
        raise ValidationError(f'Days must be between 1 and {MAX_SUMMARY_DAYS}.')

    to_date = from_date + timedelta(days=num_days - 1)
    schedules = schedule_store.load_day_schedules(db, practitioner_id)
    overrides = schedule_store.load_overrides(db, practitioner_id, from_date, to_date)
    appointments = ledger.load_appointments(db, practitioner_id, from_date, to_date)

    summaries: list[DaySummary] = []
    for offset in range(num_days):
        target_date = from_date + timedelta(days=offset)
        slots = generate_slots(
            schedules,
            overrides,
            target_date,
            appointments,
            default_slot_duration_minutes=config.DEFAULT_SLOT_DURATION_MINUTES,
        )
        if now is not None:
            slots = drop_elapsed_slots(slots, now, config.SAME_DAY_LEAD_MINUTES)

        available = sum(1 for slot in slots if slot.is_available)
        summaries.append(
            DaySummary(
                date=target_date,
                total_slots=len(slots),
                available_slots=available,
                booked_slots=len(slots) - available,
            )
        )

    return summaries
