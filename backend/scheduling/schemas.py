"""Input models collected by the booking surfaces."""

from datetime import date, time

from pydantic import BaseModel, field_validator

from backend.core import config
from backend.scheduling.domain import DEFAULT_VISIT_TYPE, VISIT_DURATIONS, Modality


def normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


class BookingRequest(BaseModel):
    """What the booking wizard has collected before anything is validated."""

    specialty: str
    doctor_id: int
    date: date
    time: time
    modality: Modality = Modality.IN_PERSON
    visit_type: str = DEFAULT_VISIT_TYPE
    notes: str | None = None

    @field_validator('specialty')
    @classmethod
    def validate_specialty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Specialty is required.')
        return normalized

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)

    @field_validator('visit_type')
    @classmethod
    def validate_visit_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in VISIT_DURATIONS:
            raise ValueError('Invalid visit type.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)

    @property
    def duration_minutes(self) -> int:
        return VISIT_DURATIONS[self.visit_type]
