"""Appointment request and response schemas.

JSON bodies use camelCase keys; every model also accepts the snake_case
attribute names so the scheduling service can be called with plain dicts.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class AppointmentRecord(CamelModel):
    """A live appointment as stored for one patient."""

    id: str
    patient_id: str
    name: str
    age: int | None = None
    email: str | None = None
    hospital: str
    appointment_date_time: datetime


class AppointmentDraft(CamelModel):
    """Validated booking details, before an id has been minted."""

    name: str
    age: int | None = Field(default=None, ge=0)
    email: str | None = None
    hospital: str
    appointment_date_time: datetime

    @model_validator(mode='before')
    @classmethod
    def combine_date_and_time(cls, data):
        # Older clients send the slot as separate appointmentDate/appointmentTime fields.
        if not isinstance(data, dict):
            return data

        combined = dict(data)
        has_date_time = combined.get('appointmentDateTime') or combined.get('appointment_date_time')
        slot_date = combined.pop('appointmentDate', None) or combined.pop('appointment_date', None)
        slot_time = combined.pop('appointmentTime', None) or combined.pop('appointment_time', None)
        if not has_date_time and slot_date and slot_time:
            combined['appointment_date_time'] = f'{str(slot_date).strip()}T{str(slot_time).strip()}'
        return combined

    @field_validator('name', 'hospital')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class AppointmentChanges(CamelModel):
    """Partial update of an existing appointment; ``id`` and ``patientId`` are not editable."""

    model_config = ConfigDict(extra='forbid')

    name: str | None = None
    age: int | None = Field(default=None, ge=0)
    email: str | None = None
    hospital: str | None = None
    appointment_date_time: datetime | None = None

    @field_validator('name', 'hospital', 'appointment_date_time', mode='before')
    @classmethod
    def reject_null_required(cls, value):
        if value is None:
            raise ValueError('Field cannot be cleared.')
        if isinstance(value, str) and not value.strip():
            raise ValueError('Field cannot be blank.')
        return value.strip() if isinstance(value, str) else value

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class BookAppointmentRequest(CamelModel):
    """Booking body; completeness is checked by the scheduling service."""

    name: str | None = None
    age: int | None = None
    email: str | None = None
    hospital: str | None = None
    appointment_date_time: str | None = None
    appointment_date: str | None = None
    appointment_time: str | None = None

    def to_details(self) -> dict:
        return self.model_dump(exclude_none=True)


class BookSelectedHospitalRequest(BookAppointmentRequest):
    selected_hospital: str | None = None

    def to_details(self) -> dict:
        details = self.model_dump(exclude_none=True, exclude={'selected_hospital'})
        if self.selected_hospital is not None:
            details['hospital'] = self.selected_hospital
        return details


class UpdateAppointmentRequest(CamelModel):
    model_config = ConfigDict(extra='forbid')

    name: str | None = None
    age: int | None = None
    email: str | None = None
    hospital: str | None = None
    appointment_date_time: str | None = None

    def to_changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class BookedAppointmentResponse(CamelModel):
    appointment: AppointmentRecord


class SuccessResponse(BaseModel):
    success: bool = True
