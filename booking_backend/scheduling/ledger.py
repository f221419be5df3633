"""
Booking ledger.

The ledger is the only writer of new appointment rows. A booking is committed
by inserting the row and letting the partial unique index on
``(practitioner_id, appointment_date, start_time)`` decide the race: the slot
lookup that precedes the insert is advisory and only lets stale requests fail
early with ``SlotUnavailable``. Losing the race at the index yields ``Conflict``.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.clock import current_time
from booking_backend.core.errors import AppointmentNotFound, Conflict, SlotUnavailable, ValidationError
from booking_backend.core.events import APPOINTMENT_BOOKED, EventBus, event_bus
from booking_backend.core.retry import run_with_store_retry
from booking_backend.models.appointment import Appointment, AppointmentStatus
from booking_backend.models.user import User
from booking_backend.scheduling import schedule_store
from booking_backend.scheduling.slots import Slot, drop_elapsed_slots, find_slot, generate_slots

logger = logging.getLogger(__name__)

MAX_PATIENT_NOTES_LENGTH = 1000
MAX_SHARED_DOCUMENTS = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class BookingRequest:
    practitioner_id: str
    patient_id: str
    appointment_date: date
    start_time: time
    patient_notes: Optional[str] = None
    shared_document_refs: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AppointmentPage:
    items: list[Appointment]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


def load_appointments(
    db: Session,
    practitioner_id: str,
    from_date: date,
    to_date: date,
) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.practitioner_id == practitioner_id,
        Appointment.appointment_date >= from_date,
        Appointment.appointment_date <= to_date,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    ).all()


def compute_slots(db: Session, practitioner_id: str, target_date: date) -> list[Slot]:
    """Point-in-time slot list for one date; advisory only."""
    return generate_slots(
        schedule_store.load_day_schedules(db, practitioner_id),
        schedule_store.load_overrides(db, practitioner_id, target_date, target_date),
        target_date,
        load_appointments(db, practitioner_id, target_date, target_date),
        default_slot_duration_minutes=config.DEFAULT_SLOT_DURATION_MINUTES,
    )


def get_slots_for_date(
    db: Session,
    practitioner_id: str,
    target_date: date,
    now: Optional[datetime] = None,
) -> list[Slot]:
    """Slots a patient can still pick: elapsed same-day slots are dropped."""
    now = now or current_time()
    slots = compute_slots(db, practitioner_id, target_date)
    if target_date == now.date():
        return drop_elapsed_slots(slots, now, config.SAME_DAY_LEAD_MINUTES)
    if target_date < now.date():
        return []
    return slots


def normalize_booking_request(request: BookingRequest, now: datetime) -> BookingRequest:
    if not request.practitioner_id or not request.practitioner_id.strip():
        raise ValidationError('Practitioner id is required.')
    if not request.patient_id or not request.patient_id.strip():
        raise ValidationError('Patient id is required.')
    if request.practitioner_id == request.patient_id:
        raise ValidationError('Practitioners cannot book appointments with themselves.')

    if request.appointment_date < now.date():
        raise ValidationError('Appointment date cannot be in the past.')
    if request.appointment_date > now.date() + timedelta(days=config.MAX_BOOKING_ADVANCE_DAYS):
        raise ValidationError(
            f'Appointment date cannot be more than {config.MAX_BOOKING_ADVANCE_DAYS} days in advance.'
        )
    if datetime.combine(request.appointment_date, request.start_time) <= now:
        raise ValidationError('Appointments must be scheduled in the future.')

    notes = (request.patient_notes or '').strip() or None
    if notes is not None and len(notes) > MAX_PATIENT_NOTES_LENGTH:
        raise ValidationError(f'Notes must be {MAX_PATIENT_NOTES_LENGTH} characters or fewer.')

    document_refs = tuple(dict.fromkeys(ref.strip() for ref in request.shared_document_refs if ref and ref.strip()))
    if len(document_refs) > MAX_SHARED_DOCUMENTS:
        raise ValidationError(f'At most {MAX_SHARED_DOCUMENTS} documents can be shared with an appointment.')

    return BookingRequest(
        practitioner_id=request.practitioner_id,
        patient_id=request.patient_id,
        appointment_date=request.appointment_date,
        start_time=request.start_time.replace(second=0, microsecond=0),
        patient_notes=notes,
        shared_document_refs=document_refs,
    )


def check_slot_open(db: Session, request: BookingRequest) -> Slot:
    slot = find_slot(compute_slots(db, request.practitioner_id, request.appointment_date), request.start_time)
    if slot is None:
        raise SlotUnavailable('The requested time is outside the practitioner\'s availability.')
    if slot.is_booked:
        raise SlotUnavailable('This time slot is already booked.')
    return slot


def stage_booking(db: Session, request: BookingRequest) -> Appointment:
    """Validate the slot and add the new row to the session without committing."""
    practitioner = db.get(User, request.practitioner_id)
    if practitioner is None or not practitioner.is_practitioner:
        raise ValidationError('Practitioner not found.')
    if db.get(User, request.patient_id) is None:
        raise ValidationError('Patient not found.')

    slot = check_slot_open(db, request)

    appointment = Appointment(
        practitioner_id=request.practitioner_id,
        patient_id=request.patient_id,
        appointment_date=request.appointment_date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        duration_minutes=slot.duration_minutes,
        status=AppointmentStatus.PENDING.value,
        consultation_fee=practitioner.consultation_fee,
        patient_notes=request.patient_notes,
        shared_document_refs=list(request.shared_document_refs),
    )
    db.add(appointment)
    return appointment


def commit_staged(db: Session, request: BookingRequest) -> None:
    """Flush and commit; a unique index violation means another booking won."""
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning(
            'Booking conflict for practitioner %s on %s at %s',
            request.practitioner_id,
            request.appointment_date,
            request.start_time,
        )
        raise Conflict('This time slot was just booked by someone else. Please choose another slot.') from exc


def commit_booking(
    db: Session,
    request: BookingRequest,
    *,
    now: Optional[datetime] = None,
    events: EventBus = event_bus,
) -> Appointment:
    """Book a slot. Returns the ``PENDING`` appointment or raises ``Conflict``/``SlotUnavailable``."""
    request = normalize_booking_request(request, now or current_time())

    def attempt() -> Appointment:
        try:
            appointment = stage_booking(db, request)
        except SlotUnavailable:
            logger.info(
                'Slot unavailable for practitioner %s on %s at %s',
                request.practitioner_id,
                request.appointment_date,
                request.start_time,
            )
            raise
        commit_staged(db, request)
        db.refresh(appointment)
        return appointment

    appointment = run_with_store_retry(db, attempt, description='commit_booking')
    logger.info(
        'Booked appointment %s for patient %s with practitioner %s',
        appointment.id,
        appointment.patient_id,
        appointment.practitioner_id,
    )
    events.emit(APPOINTMENT_BOOKED, appointment)
    return appointment


def get_appointment_for_user(db: Session, appointment_id: int, user_id: str) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None or user_id not in (appointment.practitioner_id, appointment.patient_id):
        raise AppointmentNotFound('Appointment not found.')
    return appointment


def _validate_status_filter(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    normalized = status.strip().upper()
    if normalized not in AppointmentStatus.__members__:
        valid = ', '.join(AppointmentStatus.__members__)
        raise ValidationError(f'Invalid status. Must be one of: {valid}')
    return normalized


def list_practitioner_appointments(
    db: Session,
    practitioner_id: str,
    status: Optional[str] = None,
    on_date: Optional[date] = None,
    page: int = 1,
    limit: int = 10,
) -> AppointmentPage:
    if page < 1:
        raise ValidationError('Page must be a positive integer.')
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f'Limit must be between 1 and {MAX_PAGE_SIZE}.')

    query = db.query(Appointment).filter(Appointment.practitioner_id == practitioner_id)
    status = _validate_status_filter(status)
    if status:
        query = query.filter(Appointment.status == status)
    if on_date:
        query = query.filter(Appointment.appointment_date == on_date)

    total = query.count()
    items = query.order_by(
        Appointment.appointment_date.asc(),
        Appointment.start_time.asc(),
    ).offset((page - 1) * limit).limit(limit).all()

    return AppointmentPage(items=items, page=page, limit=limit, total=total)


def list_patient_appointments(
    db: Session,
    patient_id: str,
    status: Optional[str] = None,
    upcoming: bool = False,
    today: Optional[date] = None,
) -> list[Appointment]:
    query = db.query(Appointment).filter(Appointment.patient_id == patient_id)
    status = _validate_status_filter(status)
    if status:
        query = query.filter(Appointment.status == status)
    if upcoming:
        query = query.filter(Appointment.appointment_date >= (today or current_time().date()))

    return query.order_by(
        Appointment.appointment_date.asc(),
        Appointment.start_time.asc(),
    ).all()


def appointment_stats(db: Session, user: User, today: Optional[date] = None) -> dict[str, int]:
    today = today or current_time().date()
    week_start = today - timedelta(days=today.weekday())
    week_end = week_start + timedelta(days=6)

    if user.is_practitioner:
        base = db.query(Appointment).filter(Appointment.practitioner_id == user.id)
    else:
        base = db.query(Appointment).filter(Appointment.patient_id == user.id)

    return {
        'total': base.count(),
        'today': base.filter(Appointment.appointment_date == today).count(),
        'upcoming': base.filter(
            Appointment.appointment_date >= today,
            Appointment.status != AppointmentStatus.CANCELLED.value,
        ).count(),
        'pending': base.filter(Appointment.status == AppointmentStatus.PENDING.value).count(),
        'completed': base.filter(Appointment.status == AppointmentStatus.COMPLETED.value).count(),
        'this_week': base.filter(
            Appointment.appointment_date >= week_start,
            Appointment.appointment_date <= week_end,
        ).count(),
    }
