import os
from datetime import date, datetime, time, timedelta, timezone

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from booking_backend.core import config  # noqa: E402
from booking_backend.database import Base  # noqa: E402
from booking_backend.models import appointment as appointment_models  # noqa: E402,F401
from booking_backend.models import schedule as schedule_models  # noqa: E402,F401
from booking_backend.models.schedule import BreakInterval, ScheduleTemplate  # noqa: E402
from booking_backend.models.user import User  # noqa: E402

# Monday, far enough ahead that fixed test clocks never drift into the past.
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 8, 0)

PRACTITIONER_ID = 'doc-1'
PATIENT_ID = 'patient-1'
OTHER_PATIENT_ID = 'patient-2'


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def users(db):
    practitioner = User(
        id=PRACTITIONER_ID,
        email='doctor@example.com',
        name='Dr. Example',
        role='practitioner',
        consultation_fee=1500,
    )
    patient = User(id=PATIENT_ID, email='patient@example.com', name='Pat', role='patient')
    other_patient = User(id=OTHER_PATIENT_ID, email='other@example.com', name='Other', role='patient')
    db.add_all([practitioner, patient, other_patient])
    db.commit()
    return {'practitioner': practitioner, 'patient': patient, 'other_patient': other_patient}


def add_template(
    db,
    day_of_week: int = 0,
    start: time = time(9, 0),
    end: time = time(12, 0),
    duration: int = 30,
    breaks: tuple[tuple[time, time], ...] = (),
    practitioner_id: str = PRACTITIONER_ID,
) -> ScheduleTemplate:
    template = ScheduleTemplate(
        practitioner_id=practitioner_id,
        day_of_week=day_of_week,
        start_time=start,
        end_time=end,
        slot_duration_minutes=duration,
        is_active=True,
        break_intervals=[BreakInterval(start_time=break_start, end_time=break_end) for break_start, break_end in breaks],
    )
    db.add(template)
    db.commit()
    return template


@pytest.fixture
def monday_template(db, users):
    return add_template(db, breaks=((time(10, 0), time(10, 15)),))


@pytest.fixture
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    for module in ('appointment_routes', 'availability_routes', 'schedule_routes'):
        monkeypatch.setattr(f'booking_backend.routes.{module}.ensure_database_ready', lambda: None)


def issue_token(subject: str, role: str, expires_minutes: int = 60) -> str:
    """Sign a bearer token the way the identity provider does."""
    issued_at = datetime.now(timezone.utc)
    payload = {
        'sub': subject,
        'role': role,
        'iat': issued_at,
        'exp': issued_at + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)
