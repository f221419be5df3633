"""User model definitions."""

from sqlalchemy import Column, Numeric, String
from booking_backend.database import Base

PRACTITIONER_ROLE = "practitioner"
PATIENT_ROLE = "patient"


class User(Base):
    """Read-only projection of an identity managed by the auth and profile services."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    role = Column(String)  # practitioner/patient
    consultation_fee = Column(Numeric(10, 2), nullable=True)

    @property
    def is_practitioner(self) -> bool:
        return self.role == PRACTITIONER_ROLE

    @property
    def is_patient(self) -> bool:
        return self.role == PATIENT_ROLE
