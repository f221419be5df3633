"""Weekly schedule template and per-date override models."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String, Time, UniqueConstraint
from sqlalchemy.orm import relationship

from booking_backend.database import Base


class ScheduleTemplate(Base):
    """Working hours for one weekday (0 = Monday) of a practitioner's week."""
    __tablename__ = "schedule_templates"
    __table_args__ = (
        UniqueConstraint("practitioner_id", "day_of_week", name="uq_schedule_templates_practitioner_day"),
    )

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    break_intervals = relationship(
        "BreakInterval",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="BreakInterval.start_time",
    )


class BreakInterval(Base):
    """A window inside a template's working hours where no slots are generated."""
    __tablename__ = "schedule_break_intervals"

    id = Column(Integer, primary_key=True)
    template_id = Column(Integer, ForeignKey("schedule_templates.id", ondelete="CASCADE"), index=True, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    template = relationship("ScheduleTemplate", back_populates="break_intervals")


class AvailabilityOverride(Base):
    """Blocks or reshapes a single date without touching the weekly template."""
    __tablename__ = "availability_overrides"
    __table_args__ = (
        UniqueConstraint("practitioner_id", "override_date", name="uq_availability_overrides_practitioner_date"),
    )

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    override_date = Column(Date, nullable=False)
    is_blocked = Column(Boolean, default=False, nullable=False)
    custom_start_time = Column(Time, nullable=True)
    custom_end_time = Column(Time, nullable=True)
    slot_duration_minutes = Column(Integer, nullable=True)
    reason = Column(String, nullable=True)
