"""Appointment model definitions."""

import enum
from datetime import datetime

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Time, text
from booking_backend.database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


ACTIVE_STATUSES = (
    AppointmentStatus.PENDING.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.IN_PROGRESS.value,
)


class Appointment(Base):
    """Represents a booked consultation. Rows are never deleted; cancellation is a status."""
    __tablename__ = "appointments"
    __table_args__ = (
        # One live booking per practitioner slot. Cancelled rows keep their history.
        Index(
            "uq_appointments_active_slot",
            "practitioner_id",
            "appointment_date",
            "start_time",
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
        Index("idx_appointments_patient_date", "patient_id", "appointment_date"),
    )

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    patient_id = Column(String, ForeignKey("users.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    consultation_fee = Column(Numeric(10, 2), nullable=True)
    patient_notes = Column(String, nullable=True)
    shared_document_refs = Column(JSON, nullable=False, default=list)
    practitioner_notes = Column(String, nullable=True)
    cancel_reason = Column(String, nullable=True)
    cancelled_by = Column(String, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    @property
    def status_enum(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.end_time)
