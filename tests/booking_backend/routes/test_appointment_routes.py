from datetime import datetime, time, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from booking_backend.routes.appointment_routes import (
    AppointmentResponse,
    CreateAppointmentRequest,
    RescheduleRequest,
    TransitionRequest,
    book_appointment,
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    get_appointment,
    get_appointment_stats,
    list_patient_appointments,
    list_practitioner_appointments,
    mark_no_show,
    reschedule_appointment,
    start_appointment,
    sweep_no_shows,
)
from booking_backend.routes.common import DATABASE_UNAVAILABLE_DETAIL
from conftest import MONDAY, NOW, PRACTITIONER_ID


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch, skip_schema_checks):
    state = {'now': NOW}
    monkeypatch.setattr('booking_backend.routes.appointment_routes.current_time', lambda: state['now'])
    return state


def booking_data(start: str = '09:00') -> CreateAppointmentRequest:
    return CreateAppointmentRequest(
        practitioner_id=f' {PRACTITIONER_ID} ',
        appointment_date=MONDAY,
        start_time=start,
        patient_notes='  ',
    )


def book(db, users, start: str = '09:00', patient: str = 'patient'):
    return book_appointment(data=booking_data(start), current_user=users[patient], db=db)


def test_create_appointment_request_normalizes_fields() -> None:
    request = booking_data('9:30')

    assert request.practitioner_id == PRACTITIONER_ID
    assert request.start_time == time(9, 30)
    assert request.patient_notes is None


def test_create_appointment_request_rejects_malformed_time() -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(practitioner_id=PRACTITIONER_ID, appointment_date=MONDAY, start_time='9am')


def test_transition_request_rejects_long_reason() -> None:
    with pytest.raises(ValidationError):
        TransitionRequest(reason='x' * 501)


def test_book_appointment_returns_pending_appointment(db, users, monday_template, clock) -> None:
    appointment = book(db, users)

    response = AppointmentResponse.model_validate(appointment)
    assert response.status == 'PENDING'
    assert response.patient_id == users['patient'].id
    assert response.consultation_fee == 1500.0
    assert response.model_dump()['start_time'] == '09:00'
    assert response.model_dump()['end_time'] == '09:30'


def test_book_appointment_reports_taken_slot(db, users, monday_template, clock) -> None:
    book(db, users)

    with pytest.raises(HTTPException) as exception_info:
        book(db, users, patient='other_patient')

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'slot_unavailable'


def test_book_appointment_rejects_past_dates(db, users, monday_template, clock) -> None:
    clock['now'] = datetime(2030, 1, 8, 8, 0)

    with pytest.raises(HTTPException) as exception_info:
        book(db, users)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == {
        'code': 'validation_error',
        'message': 'Appointment date cannot be in the past.',
    }


def test_list_practitioner_appointments_returns_page(db, users, monday_template, clock) -> None:
    book(db, users, '09:00')
    book(db, users, '09:30', patient='other_patient')
    book(db, users, '10:30')

    result = list_practitioner_appointments(
        appointment_status=None,
        on_date=MONDAY,
        page=2,
        limit=2,
        current_user=users['practitioner'],
        db=db,
    )

    assert result.pagination.total == 3
    assert result.pagination.total_pages == 2
    assert [item.start_time for item in result.appointments] == [time(10, 30)]


def test_list_practitioner_appointments_rejects_unknown_status(db, users, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_practitioner_appointments(
            appointment_status='lost',
            on_date=None,
            page=1,
            limit=10,
            current_user=users['practitioner'],
            db=db,
        )

    assert exception_info.value.status_code == 400


def test_list_patient_appointments_only_shows_own(db, users, monday_template, clock) -> None:
    book(db, users, '09:00')
    book(db, users, '09:30', patient='other_patient')

    own = list_patient_appointments(appointment_status=None, upcoming=True, current_user=users['patient'], db=db)

    assert [item.start_time for item in own] == [time(9, 0)]


def test_get_appointment_hides_other_patients_bookings(db, users, monday_template, clock) -> None:
    appointment = book(db, users)

    assert get_appointment(appointment_id=appointment.id, current_user=users['practitioner'], db=db).id == appointment.id
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=appointment.id, current_user=users['other_patient'], db=db)

    assert exception_info.value.status_code == 404


def test_full_visit_through_the_routes(db, users, monday_template, clock) -> None:
    appointment = book(db, users)
    practitioner = users['practitioner']

    confirmed = confirm_appointment(appointment_id=appointment.id, data=None, current_user=practitioner, db=db)
    assert confirmed.status == 'CONFIRMED'

    clock['now'] = datetime(2030, 1, 7, 9, 1)
    started = start_appointment(appointment_id=appointment.id, data=None, current_user=practitioner, db=db)
    assert started.status == 'IN_PROGRESS'

    clock['now'] = datetime(2030, 1, 7, 9, 25)
    completed = complete_appointment(
        appointment_id=appointment.id,
        data=TransitionRequest(notes='Prescribed rest'),
        current_user=practitioner,
        db=db,
    )
    assert completed.status == 'COMPLETED'
    assert completed.practitioner_notes == 'Prescribed rest'


def test_patient_cannot_confirm_through_the_lifecycle(db, users, monday_template, clock) -> None:
    appointment = book(db, users)

    with pytest.raises(HTTPException) as exception_info:
        confirm_appointment(appointment_id=appointment.id, data=None, current_user=users['patient'], db=db)

    assert exception_info.value.status_code == 403


def test_cancel_inside_cutoff_returns_conflict(db, users, monday_template, clock) -> None:
    appointment = book(db, users)
    clock['now'] = datetime(2030, 1, 7, 8, 0)

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(
            appointment_id=appointment.id,
            data=TransitionRequest(reason='Running late'),
            current_user=users['patient'],
            db=db,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'cancellation_window_closed'


def test_cancel_then_cancel_again_is_invalid(db, users, monday_template, clock) -> None:
    appointment = book(db, users)
    cancelled = cancel_appointment(
        appointment_id=appointment.id,
        data=TransitionRequest(reason='Travelling'),
        current_user=users['patient'],
        db=db,
    )
    assert cancelled.cancel_reason == 'Travelling'

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment_id=appointment.id, data=None, current_user=users['patient'], db=db)

    assert exception_info.value.detail['code'] == 'invalid_transition'


def test_reschedule_route_returns_replacement(db, users, monday_template, clock) -> None:
    appointment = book(db, users)

    replacement = reschedule_appointment(
        appointment_id=appointment.id,
        data=RescheduleRequest(appointment_date=MONDAY, start_time='11:30'),
        current_user=users['patient'],
        db=db,
    )

    assert replacement.id != appointment.id
    assert replacement.start_time == time(11, 30)


def test_no_show_routes(db, users, monday_template, clock) -> None:
    first = book(db, users, '09:00')
    second = book(db, users, '09:30', patient='other_patient')
    practitioner = users['practitioner']
    for appointment in (first, second):
        confirm_appointment(appointment_id=appointment.id, data=None, current_user=practitioner, db=db)

    clock['now'] = datetime.combine(MONDAY, time(9, 30))
    marked = mark_no_show(appointment_id=first.id, data=None, current_user=practitioner, db=db)
    assert marked.status == 'NO_SHOW'

    clock['now'] = datetime.combine(MONDAY, time(10, 0)) + timedelta(minutes=1)
    swept = sweep_no_shows(current_user=practitioner, db=db)
    assert [appointment.id for appointment in swept] == [second.id]


def test_stats_route(db, users, monday_template, clock) -> None:
    book(db, users)
    clock['now'] = datetime.combine(MONDAY, time(7, 0))

    stats = get_appointment_stats(current_user=users['patient'], db=db)

    assert stats['total'] == 1
    assert stats['today'] == 1
    assert stats['pending'] == 1


def test_database_errors_become_service_unavailable(db, users, clock, monkeypatch) -> None:
    def unavailable(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr('booking_backend.scheduling.ledger.get_appointment_for_user', unavailable)

    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=1, current_user=users['patient'], db=db)

    assert exception_info.value.status_code == 503
    assert exception_info.value.detail == DATABASE_UNAVAILABLE_DETAIL
