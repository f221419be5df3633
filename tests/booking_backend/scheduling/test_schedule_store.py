from datetime import time, timedelta

import pytest

from booking_backend.core.errors import ScheduleInUse, SlotUnavailable, ValidationError
from booking_backend.core.events import EventBus
from booking_backend.scheduling import ledger, schedule_store
from booking_backend.scheduling.slots import DateOverride, DaySchedule, TimeWindow
from conftest import MONDAY, NOW, OTHER_PATIENT_ID, PATIENT_ID, PRACTITIONER_ID, add_template


def day_schedule(**overrides) -> DaySchedule:
    values = {
        'day_of_week': 0,
        'start_time': time(9, 0),
        'end_time': time(17, 0),
        'slot_duration_minutes': 30,
        'breaks': (),
    }
    values.update(overrides)
    return DaySchedule(**values)


def test_upsert_template_creates_then_replaces(db, users) -> None:
    created = schedule_store.upsert_template(
        db,
        PRACTITIONER_ID,
        day_schedule(breaks=(TimeWindow(time(15, 0), time(15, 15)), TimeWindow(time(12, 0), time(13, 0)))),
    )

    assert [(item.start_time, item.end_time) for item in created.break_intervals] == [
        (time(12, 0), time(13, 0)),
        (time(15, 0), time(15, 15)),
    ]

    updated = schedule_store.upsert_template(db, PRACTITIONER_ID, day_schedule(slot_duration_minutes=45))

    assert updated.id == created.id
    assert updated.slot_duration_minutes == 45
    assert updated.break_intervals == []
    assert len(schedule_store.list_templates(db, PRACTITIONER_ID)) == 1


@pytest.mark.parametrize(
    'schedule',
    [
        day_schedule(start_time=time(17, 0), end_time=time(9, 0)),
        day_schedule(slot_duration_minutes=10),
        day_schedule(slot_duration_minutes=181),
        day_schedule(day_of_week=7),
        day_schedule(breaks=(TimeWindow(time(8, 0), time(9, 30)),)),
        day_schedule(breaks=(TimeWindow(time(12, 0), time(12, 30)), TimeWindow(time(12, 40), time(13, 0)))),
        day_schedule(breaks=tuple(TimeWindow(time(hour, 0), time(hour, 15)) for hour in range(10, 15))),
    ],
)
def test_upsert_template_rejects_invalid_schedules(db, users, schedule: DaySchedule) -> None:
    with pytest.raises(ValidationError):
        schedule_store.upsert_template(db, PRACTITIONER_ID, schedule)

    assert schedule_store.list_templates(db, PRACTITIONER_ID) == []


def test_delete_template_reports_whether_anything_was_removed(db, monday_template) -> None:
    assert schedule_store.delete_template(db, PRACTITIONER_ID, 0) is True
    assert schedule_store.delete_template(db, PRACTITIONER_ID, 0) is False
    assert schedule_store.load_day_schedules(db, PRACTITIONER_ID) == []


def test_upsert_override_requires_block_or_window(db, users) -> None:
    with pytest.raises(ValidationError):
        schedule_store.upsert_override(db, PRACTITIONER_ID, DateOverride(override_date=MONDAY))


def test_blocked_override_clears_custom_window(db, users) -> None:
    schedule_store.upsert_override(
        db,
        PRACTITIONER_ID,
        DateOverride(override_date=MONDAY, custom_window=TimeWindow(time(13, 0), time(15, 0))),
    )

    row = schedule_store.upsert_override(
        db,
        PRACTITIONER_ID,
        DateOverride(override_date=MONDAY, is_blocked=True, custom_window=TimeWindow(time(13, 0), time(15, 0))),
        reason='Conference',
    )

    assert row.is_blocked is True
    assert row.custom_start_time is None
    assert row.reason == 'Conference'
    assert len(schedule_store.list_override_rows(db, PRACTITIONER_ID)) == 1
    assert schedule_store.load_overrides(db, PRACTITIONER_ID, MONDAY, MONDAY)[0].is_blocked is True


def test_blocking_a_day_with_bookings_is_refused(db, monday_template) -> None:
    ledger.commit_booking(
        db,
        ledger.BookingRequest(
            practitioner_id=PRACTITIONER_ID,
            patient_id=PATIENT_ID,
            appointment_date=MONDAY,
            start_time=time(11, 0),
        ),
        now=NOW,
        events=EventBus(),
    )

    with pytest.raises(ScheduleInUse):
        schedule_store.upsert_override(db, PRACTITIONER_ID, DateOverride(override_date=MONDAY, is_blocked=True))

    with pytest.raises(ScheduleInUse):
        schedule_store.upsert_override(
            db,
            PRACTITIONER_ID,
            DateOverride(override_date=MONDAY, custom_window=TimeWindow(time(9, 0), time(11, 0))),
        )

    row = schedule_store.upsert_override(
        db,
        PRACTITIONER_ID,
        DateOverride(override_date=MONDAY, custom_window=TimeWindow(time(10, 30), time(12, 0))),
    )
    assert row.custom_start_time == time(10, 30)


def test_delete_override_reports_whether_anything_was_removed(db, users) -> None:
    schedule_store.upsert_override(db, PRACTITIONER_ID, DateOverride(override_date=MONDAY, is_blocked=True))

    assert schedule_store.delete_override(db, PRACTITIONER_ID, MONDAY) is True
    assert schedule_store.delete_override(db, PRACTITIONER_ID, MONDAY) is False


def book(db, start: time, on=MONDAY, patient_id: str = PATIENT_ID):
    return ledger.commit_booking(
        db,
        ledger.BookingRequest(
            practitioner_id=PRACTITIONER_ID,
            patient_id=patient_id,
            appointment_date=on,
            start_time=start,
        ),
        now=NOW,
        events=EventBus(),
    )


def test_override_that_shifts_the_slot_grid_is_refused(db, monday_template) -> None:
    book(db, time(9, 30))
    regridded = DateOverride(
        override_date=MONDAY,
        custom_window=TimeWindow(time(9, 0), time(12, 0)),
        slot_duration_minutes=45,
    )

    with pytest.raises(ScheduleInUse):
        schedule_store.upsert_override(db, PRACTITIONER_ID, regridded, today=NOW.date())

    assert schedule_store.list_override_rows(db, PRACTITIONER_ID) == []
    with pytest.raises(SlotUnavailable):
        book(db, time(9, 45), patient_id=OTHER_PATIENT_ID)


def test_template_edit_that_shifts_the_slot_grid_is_refused(db, monday_template) -> None:
    book(db, time(9, 30))

    with pytest.raises(ScheduleInUse):
        schedule_store.upsert_template(
            db,
            PRACTITIONER_ID,
            day_schedule(end_time=time(12, 0), slot_duration_minutes=45),
            today=NOW.date(),
        )

    assert schedule_store.load_day_schedules(db, PRACTITIONER_ID)[0].slot_duration_minutes == 30


def test_template_edit_that_shortens_slots_under_a_booking_is_refused(db, users) -> None:
    add_template(db, duration=60)
    book(db, time(9, 0))

    with pytest.raises(ScheduleInUse):
        schedule_store.upsert_template(
            db,
            PRACTITIONER_ID,
            day_schedule(end_time=time(12, 0), slot_duration_minutes=30),
            today=NOW.date(),
        )


def test_template_edit_that_keeps_booked_slots_is_allowed(db, monday_template) -> None:
    book(db, time(11, 30))

    updated = schedule_store.upsert_template(
        db,
        PRACTITIONER_ID,
        day_schedule(end_time=time(13, 0), breaks=(TimeWindow(time(10, 0), time(10, 15)),)),
        today=NOW.date(),
    )

    assert updated.end_time == time(13, 0)


def test_delete_template_with_upcoming_bookings_is_refused(db, monday_template) -> None:
    book(db, time(9, 0))

    with pytest.raises(ScheduleInUse):
        schedule_store.delete_template(db, PRACTITIONER_ID, 0, today=NOW.date())

    assert len(schedule_store.list_templates(db, PRACTITIONER_ID)) == 1
    assert schedule_store.delete_template(db, PRACTITIONER_ID, 0, today=MONDAY + timedelta(days=1)) is True


def test_delete_override_that_carries_bookings_is_refused(db, users) -> None:
    tuesday = MONDAY + timedelta(days=1)
    schedule_store.upsert_override(
        db,
        PRACTITIONER_ID,
        DateOverride(override_date=tuesday, custom_window=TimeWindow(time(14, 0), time(16, 0))),
        today=NOW.date(),
    )
    book(db, time(14, 30), on=tuesday)

    with pytest.raises(ScheduleInUse):
        schedule_store.delete_override(db, PRACTITIONER_ID, tuesday, today=NOW.date())

    assert len(schedule_store.list_override_rows(db, PRACTITIONER_ID)) == 1
