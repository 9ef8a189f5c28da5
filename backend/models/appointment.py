"""Appointment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String
from backend.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(Base):
    """A booked slot owned by one patient."""
    __tablename__ = "appointments"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, index=True, nullable=False)
    patient_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    age = Column(Integer)
    email = Column(String)
    hospital = Column(String, nullable=False)
    appointment_date_time = Column(String, nullable=False)  # ISO 8601, offset kept as supplied
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PatientSchedule(Base):
    """Per-patient version token bumped on every booking."""
    __tablename__ = "patient_schedules"

    patient_id = Column(String, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
