from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from booking_backend.core import config


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Sessions are handed to FastAPI's threadpool.
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_schedule_schema_checked = False
_appointment_schema_checked = False


def ensure_schedule_schema() -> None:
    global _schedule_schema_checked

    if _schedule_schema_checked:
        return

    with _schema_lock:
        if _schedule_schema_checked:
            return

        table_names = inspect(engine).get_table_names()

        with engine.begin() as connection:
            if 'schedule_templates' in table_names:
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_schedule_templates_practitioner_day '
                        'ON schedule_templates(practitioner_id, day_of_week)'
                    )
                )
            if 'availability_overrides' in table_names:
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_availability_overrides_practitioner_date '
                        'ON availability_overrides(practitioner_id, override_date)'
                    )
                )

        _schedule_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        if 'appointments' not in inspect(engine).get_table_names():
            _appointment_schema_checked = True
            return

        with engine.begin() as connection:
            # The booking guarantee rests on this index; both SQLite and Postgres accept partial indexes.
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                    "ON appointments(practitioner_id, appointment_date, start_time) WHERE status != 'CANCELLED'"
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_patient_date '
                    'ON appointments(patient_id, appointment_date)'
                )
            )

        _appointment_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
