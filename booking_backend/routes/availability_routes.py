from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.clock import current_time
from booking_backend.core.errors import SchedulingError
from booking_backend.database import get_db
from booking_backend.routes.common import ClockTime, ensure_database_ready, translate_error
from booking_backend.scheduling import ledger, summary
from booking_backend.scheduling.slots import next_available_slot

router = APIRouter(tags=['availability'])


class SlotResponse(BaseModel):
    date: date
    start_time: ClockTime
    end_time: ClockTime
    duration_minutes: int
    is_available: bool
    is_booked: bool

    class Config:
        from_attributes = True


class SlotStatisticsResponse(BaseModel):
    total_slots: int
    booked_slots: int
    available_slots: int
    utilization: str


class DaySlotsResponse(BaseModel):
    practitioner_id: str
    date: date
    all_slots: list[SlotResponse]
    available_slots: list[SlotResponse]
    next_available: SlotResponse | None = None
    statistics: SlotStatisticsResponse


class DaySummaryResponse(BaseModel):
    date: date
    total_slots: int
    available_slots: int
    booked_slots: int

    class Config:
        from_attributes = True


def build_statistics(total_slots: int, booked_slots: int) -> SlotStatisticsResponse:
    utilization = (booked_slots / total_slots * 100) if total_slots else 0
    return SlotStatisticsResponse(
        total_slots=total_slots,
        booked_slots=booked_slots,
        available_slots=total_slots - booked_slots,
        utilization=f'{utilization:.1f}%',
    )


@router.get('/{practitioner_id}/slots', response_model=DaySlotsResponse)
def list_slots(
    practitioner_id: str,
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = ledger.get_slots_for_date(db, practitioner_id, slot_date, now=current_time())
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc

    booked = sum(1 for slot in slots if slot.is_booked)
    first_open = next_available_slot(slots)
    return DaySlotsResponse(
        practitioner_id=practitioner_id,
        date=slot_date,
        all_slots=[SlotResponse.model_validate(slot) for slot in slots],
        available_slots=[SlotResponse.model_validate(slot) for slot in slots if slot.is_available],
        next_available=SlotResponse.model_validate(first_open) if first_open else None,
        statistics=build_statistics(len(slots), booked),
    )


@router.get('/{practitioner_id}/summary', response_model=list[DaySummaryResponse])
def get_availability_summary(
    practitioner_id: str,
    from_date: date | None = Query(default=None),
    days: int = Query(default=config.SUMMARY_DEFAULT_DAYS, ge=1, le=summary.MAX_SUMMARY_DAYS),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    now = current_time()
    try:
        return summary.summarize(db, practitioner_id, from_date or now.date(), days, now=now)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc
