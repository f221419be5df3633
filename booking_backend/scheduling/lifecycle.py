"""
Appointment lifecycle.

PENDING -> CONFIRMED -> IN_PROGRESS -> COMPLETED, with CANCELLED reachable
from PENDING or CONFIRMED and NO_SHOW from CONFIRMED once the scheduled end
has passed. Every legal move is listed in ``TRANSITIONS``; anything else is an
``InvalidTransition``. Status writes are conditional on the status that was
read, so two concurrent transitions cannot both succeed.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.clock import current_time
from booking_backend.core.errors import (
    AppointmentNotFound,
    CancellationWindowClosed,
    Conflict,
    InvalidTransition,
    NotPermitted,
    ValidationError,
)
from booking_backend.core.events import APPOINTMENT_RESCHEDULED, EventBus, event_bus, transition_event_name
from booking_backend.core.retry import run_with_store_retry
from booking_backend.models.appointment import Appointment, AppointmentStatus
from booking_backend.scheduling import ledger

logger = logging.getLogger(__name__)


class LifecycleAction(str, enum.Enum):
    CONFIRM = 'confirm'
    CANCEL = 'cancel'
    START = 'start'
    COMPLETE = 'complete'
    MARK_NO_SHOW = 'no_show'


TRANSITIONS: dict[tuple[AppointmentStatus, LifecycleAction], AppointmentStatus] = {
    (AppointmentStatus.PENDING, LifecycleAction.CONFIRM): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.PENDING, LifecycleAction.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, LifecycleAction.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, LifecycleAction.START): AppointmentStatus.IN_PROGRESS,
    (AppointmentStatus.CONFIRMED, LifecycleAction.MARK_NO_SHOW): AppointmentStatus.NO_SHOW,
    (AppointmentStatus.IN_PROGRESS, LifecycleAction.COMPLETE): AppointmentStatus.COMPLETED,
}

TERMINAL_STATES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

PRACTITIONER_ACTIONS = frozenset({
    LifecycleAction.CONFIRM,
    LifecycleAction.START,
    LifecycleAction.COMPLETE,
    LifecycleAction.MARK_NO_SHOW,
})


@dataclass(frozen=True)
class LifecyclePolicy:
    cancellation_cutoff: timedelta
    no_show_grace: timedelta = timedelta(0)

    @classmethod
    def from_config(cls) -> 'LifecyclePolicy':
        return cls(
            cancellation_cutoff=timedelta(minutes=config.CANCELLATION_CUTOFF_MINUTES),
            no_show_grace=timedelta(minutes=config.NO_SHOW_GRACE_MINUTES),
        )


def next_status(current: AppointmentStatus, action: LifecycleAction) -> AppointmentStatus:
    if current in TERMINAL_STATES:
        raise InvalidTransition(f'Appointment is already {current.value.lower()}; it cannot {action.value}.')
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidTransition(f'Cannot {action.value} an appointment that is {current.value.lower()}.')
    return target


def check_actor(appointment: Appointment, action: LifecycleAction, actor_id: Optional[str]) -> None:
    """``actor_id=None`` stands for the system itself (scheduled sweeps)."""
    if actor_id is None:
        return
    if action in PRACTITIONER_ACTIONS:
        if actor_id != appointment.practitioner_id:
            raise NotPermitted('Only the practitioner can perform this action.')
    elif actor_id not in (appointment.practitioner_id, appointment.patient_id):
        raise NotPermitted('Only the practitioner or the patient can cancel this appointment.')


def check_time_window(
    appointment: Appointment,
    action: LifecycleAction,
    now: datetime,
    policy: LifecyclePolicy,
) -> None:
    if action == LifecycleAction.CANCEL:
        if now >= appointment.starts_at - policy.cancellation_cutoff:
            hours = policy.cancellation_cutoff.total_seconds() / 3600
            raise CancellationWindowClosed(
                f'Appointments can only be cancelled at least {hours:g} hour(s) before they start.'
            )
    elif action == LifecycleAction.START:
        if now < appointment.starts_at:
            raise InvalidTransition('An appointment cannot be started before its scheduled time.')
    elif action == LifecycleAction.MARK_NO_SHOW:
        if now < appointment.ends_at + policy.no_show_grace:
            raise InvalidTransition('An appointment can only be marked as a no-show after it has ended.')


def plan_transition(
    appointment: Appointment,
    action: LifecycleAction,
    now: datetime,
    policy: LifecyclePolicy,
    actor_id: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """Check every rule and return the column values the transition writes."""
    target = next_status(appointment.status_enum, action)
    check_actor(appointment, action, actor_id)
    check_time_window(appointment, action, now, policy)

    values = {'status': target.value, 'updated_at': now}
    if target == AppointmentStatus.CANCELLED:
        values['cancel_reason'] = (reason or '').strip() or None
        values['cancelled_by'] = actor_id
    elif target == AppointmentStatus.IN_PROGRESS:
        values['started_at'] = now
    elif target == AppointmentStatus.COMPLETED:
        values['completed_at'] = now
    if notes and notes.strip():
        values['practitioner_notes'] = notes.strip()
    return values


def _write_transition(db: Session, appointment: Appointment, values: dict) -> None:
    """Conditional update: only applies if nobody changed the status since it was read."""
    updated = db.query(Appointment).filter(
        Appointment.id == appointment.id,
        Appointment.status == appointment.status,
    ).update(values, synchronize_session=False)

    if updated != 1:
        db.rollback()
        raise InvalidTransition('The appointment was changed by another request. Please reload it.')


def transition_appointment(
    db: Session,
    appointment_id: int,
    action: LifecycleAction,
    actor_id: Optional[str],
    *,
    now: Optional[datetime] = None,
    policy: Optional[LifecyclePolicy] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    events: EventBus = event_bus,
) -> Appointment:
    now = now or current_time()
    policy = policy or LifecyclePolicy.from_config()

    def attempt() -> Appointment:
        if actor_id is None:
            appointment = db.get(Appointment, appointment_id)
            if appointment is None:
                raise AppointmentNotFound('Appointment not found.')
        else:
            appointment = ledger.get_appointment_for_user(db, appointment_id, actor_id)

        values = plan_transition(appointment, action, now, policy, actor_id, reason, notes)
        _write_transition(db, appointment, values)
        db.commit()
        db.refresh(appointment)
        return appointment

    appointment = run_with_store_retry(db, attempt, description=f'{action.value}_appointment')
    logger.info('Appointment %s moved to %s by %s', appointment.id, appointment.status, actor_id or 'system')
    events.emit(transition_event_name(appointment.status), appointment)
    return appointment


def confirm(db: Session, appointment_id: int, actor_id: str, **kwargs) -> Appointment:
    return transition_appointment(db, appointment_id, LifecycleAction.CONFIRM, actor_id, **kwargs)


def cancel(db: Session, appointment_id: int, actor_id: str, **kwargs) -> Appointment:
    return transition_appointment(db, appointment_id, LifecycleAction.CANCEL, actor_id, **kwargs)


def start(db: Session, appointment_id: int, actor_id: str, **kwargs) -> Appointment:
    return transition_appointment(db, appointment_id, LifecycleAction.START, actor_id, **kwargs)


def complete(db: Session, appointment_id: int, actor_id: str, **kwargs) -> Appointment:
    return transition_appointment(db, appointment_id, LifecycleAction.COMPLETE, actor_id, **kwargs)


def mark_no_show(db: Session, appointment_id: int, actor_id: Optional[str], **kwargs) -> Appointment:
    return transition_appointment(db, appointment_id, LifecycleAction.MARK_NO_SHOW, actor_id, **kwargs)


def reschedule(
    db: Session,
    appointment_id: int,
    actor_id: str,
    new_date: date,
    new_start_time: time,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LifecyclePolicy] = None,
    reason: Optional[str] = None,
    events: EventBus = event_bus,
) -> Appointment:
    """Cancel an appointment and book a new slot in one transaction.

    The new row still goes through the unique slot index; if it loses, the
    cancellation is rolled back with it and the original booking stands.
    """
    now = now or current_time()
    policy = policy or LifecyclePolicy.from_config()

    def attempt() -> tuple[Appointment, Appointment]:
        original = ledger.get_appointment_for_user(db, appointment_id, actor_id)
        if original.appointment_date == new_date and original.start_time == new_start_time:
            raise ValidationError('Choose a different slot to reschedule to.')

        request = ledger.normalize_booking_request(
            ledger.BookingRequest(
                practitioner_id=original.practitioner_id,
                patient_id=original.patient_id,
                appointment_date=new_date,
                start_time=new_start_time,
                patient_notes=original.patient_notes,
                shared_document_refs=tuple(original.shared_document_refs or ()),
            ),
            now,
        )

        values = plan_transition(
            original,
            LifecycleAction.CANCEL,
            now,
            policy,
            actor_id,
            reason=reason or 'Rescheduled',
        )
        try:
            _write_transition(db, original, values)
            db.flush()
            replacement = ledger.stage_booking(db, request)
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise Conflict('This time slot was just booked by someone else. Please choose another slot.') from exc
        except Exception:
            db.rollback()
            raise

        ledger.commit_staged(db, request)
        db.refresh(original)
        db.refresh(replacement)
        return original, replacement

    original, replacement = run_with_store_retry(db, attempt, description='reschedule_appointment')
    logger.info('Appointment %s rescheduled as %s', original.id, replacement.id)
    events.emit(transition_event_name(original.status), original)
    events.emit(APPOINTMENT_RESCHEDULED, replacement)
    return replacement


def sweep_no_shows(
    db: Session,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LifecyclePolicy] = None,
    practitioner_id: Optional[str] = None,
    events: EventBus = event_bus,
) -> list[Appointment]:
    """Mark every confirmed appointment whose end (plus grace) has passed as a no-show."""
    now = now or current_time()
    policy = policy or LifecyclePolicy.from_config()

    def attempt() -> list[Appointment]:
        query = db.query(Appointment).filter(
            Appointment.status == AppointmentStatus.CONFIRMED.value,
            Appointment.appointment_date <= now.date(),
        )
        if practitioner_id is not None:
            query = query.filter(Appointment.practitioner_id == practitioner_id)

        overdue = [
            appointment for appointment in query.all()
            if appointment.ends_at + policy.no_show_grace <= now
        ]

        marked: list[Appointment] = []
        for appointment in overdue:
            values = plan_transition(appointment, LifecycleAction.MARK_NO_SHOW, now, policy)
            updated = db.query(Appointment).filter(
                Appointment.id == appointment.id,
                Appointment.status == AppointmentStatus.CONFIRMED.value,
            ).update(values, synchronize_session=False)
            if updated == 1:
                marked.append(appointment)

        db.commit()
        for appointment in marked:
            db.refresh(appointment)
        return marked

    marked = run_with_store_retry(db, attempt, description='sweep_no_shows')
    if marked:
        logger.info('Marked %s appointment(s) as no-show', len(marked))
    for appointment in marked:
        events.emit(transition_event_name(appointment.status), appointment)
    return marked
