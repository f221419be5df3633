from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_user, require_patient, require_practitioner
from booking_backend.core.clock import current_time
from booking_backend.core.errors import SchedulingError
from booking_backend.database import get_db
from booking_backend.models.user import User
from booking_backend.routes.common import ClockTime, ensure_database_ready, parse_time_field, translate_error
from booking_backend.scheduling import ledger, lifecycle
from booking_backend.scheduling.lifecycle import LifecycleAction

router = APIRouter(tags=['appointments'])

MAX_REASON_LENGTH = 500


class CreateAppointmentRequest(BaseModel):
    practitioner_id: str
    appointment_date: date
    start_time: time
    patient_notes: str | None = None
    shared_document_refs: list[str] = []

    @field_validator('practitioner_id')
    @classmethod
    def validate_practitioner_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Practitioner id is required.')
        return normalized

    @field_validator('start_time', mode='before')
    @classmethod
    def validate_start_time(cls, value):
        return parse_time_field(value, 'start time')

    @field_validator('patient_notes')
    @classmethod
    def validate_patient_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > ledger.MAX_PATIENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {ledger.MAX_PATIENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class TransitionRequest(BaseModel):
    reason: str | None = None
    notes: str | None = None

    @field_validator('reason', 'notes')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Text must be {MAX_REASON_LENGTH} characters or fewer.')
        return normalized or None


class RescheduleRequest(BaseModel):
    appointment_date: date
    start_time: time
    reason: str | None = None

    @field_validator('start_time', mode='before')
    @classmethod
    def validate_start_time(cls, value):
        return parse_time_field(value, 'start time')


class AppointmentResponse(BaseModel):
    id: int
    practitioner_id: str
    patient_id: str
    appointment_date: date
    start_time: ClockTime
    end_time: ClockTime
    duration_minutes: int
    status: str
    consultation_fee: float | None = None
    patient_notes: str | None = None
    shared_document_refs: list[str] = []
    practitioner_notes: str | None = None
    cancel_reason: str | None = None
    cancelled_by: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class AppointmentPageResponse(BaseModel):
    appointments: list[AppointmentResponse]
    pagination: PaginationResponse


class AppointmentStatsResponse(BaseModel):
    total: int
    today: int
    upcoming: int
    pending: int
    completed: int
    this_week: int


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(require_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    request = ledger.BookingRequest(
        practitioner_id=data.practitioner_id,
        patient_id=current_user.id,
        appointment_date=data.appointment_date,
        start_time=data.start_time,
        patient_notes=data.patient_notes,
        shared_document_refs=tuple(data.shared_document_refs),
    )

    try:
        return ledger.commit_booking(db, request, now=current_time())
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc


@router.get('/practitioner', response_model=AppointmentPageResponse)
def list_practitioner_appointments(
    appointment_status: str | None = Query(default=None, alias='status'),
    on_date: date | None = Query(default=None, alias='date'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=ledger.MAX_PAGE_SIZE),
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = ledger.list_practitioner_appointments(
            db,
            current_user.id,
            status=appointment_status,
            on_date=on_date,
            page=page,
            limit=limit,
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc

    return AppointmentPageResponse(
        appointments=[AppointmentResponse.model_validate(item) for item in result.items],
        pagination=PaginationResponse(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.get('/patient', response_model=list[AppointmentResponse])
def list_patient_appointments(
    appointment_status: str | None = Query(default=None, alias='status'),
    upcoming: bool = Query(default=False),
    current_user: User = Depends(require_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return ledger.list_patient_appointments(
            db,
            current_user.id,
            status=appointment_status,
            upcoming=upcoming,
            today=current_time().date(),
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc


@router.get('/stats', response_model=AppointmentStatsResponse)
def get_appointment_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return ledger.appointment_stats(db, current_user, today=current_time().date())
    except SQLAlchemyError as exc:
        raise translate_error(exc) from exc


@router.post('/no-shows/sweep', response_model=list[AppointmentResponse])
def sweep_no_shows(
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return lifecycle.sweep_no_shows(db, now=current_time(), practitioner_id=current_user.id)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return ledger.get_appointment_for_user(db, appointment_id, current_user.id)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc


def run_transition(
    action: LifecycleAction,
    appointment_id: int,
    data: TransitionRequest | None,
    current_user: User,
    db: Session,
):
    ensure_database_ready()

    data = data or TransitionRequest()
    try:
        return lifecycle.transition_appointment(
            db,
            appointment_id,
            action,
            current_user.id,
            now=current_time(),
            reason=data.reason,
            notes=data.notes,
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    data: TransitionRequest | None = None,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    return run_transition(LifecycleAction.CONFIRM, appointment_id, data, current_user, db)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: TransitionRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return run_transition(LifecycleAction.CANCEL, appointment_id, data, current_user, db)


@router.post('/{appointment_id}/start', response_model=AppointmentResponse)
def start_appointment(
    appointment_id: int,
    data: TransitionRequest | None = None,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    return run_transition(LifecycleAction.START, appointment_id, data, current_user, db)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    data: TransitionRequest | None = None,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    return run_transition(LifecycleAction.COMPLETE, appointment_id, data, current_user, db)


@router.post('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_no_show(
    appointment_id: int,
    data: TransitionRequest | None = None,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    return run_transition(LifecycleAction.MARK_NO_SHOW, appointment_id, data, current_user, db)


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return lifecycle.reschedule(
            db,
            appointment_id,
            current_user.id,
            data.appointment_date,
            data.start_time,
            now=current_time(),
            reason=data.reason,
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        raise translate_error(exc) from exc
