"""Value types shared by the scheduling core."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from backend.scheduling import errors

if TYPE_CHECKING:
    from backend.models.appointment import Appointment


class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Modality(str, Enum):
    IN_PERSON = "in-person"
    VIRTUAL = "virtual"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"

    @property
    def is_terminal(self) -> bool:
        return self is not AppointmentStatus.SCHEDULED


# Statuses whose appointments still occupy the doctor's time.
ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.MISSED,
)


VISIT_DURATIONS = {
    'consultation': 30,
    'follow-up': 30,
    'cognitive-assessment': 60,
    'telehealth-check-in': 15,
}
DEFAULT_VISIT_TYPE = 'consultation'


@dataclass(frozen=True)
class Actor:
    """Whoever is acting, as resolved by the identity layer."""

    id: int
    role: Role
    doctor_id: int | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.DOCTOR, Role.ADMIN)


@dataclass(frozen=True)
class AvailabilityWindow:
    """A working window of one doctor on one concrete date."""

    date: date
    start: time
    end: time
    slot_minutes: int

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, self.end)


@dataclass(frozen=True, order=True)
class TimeSlot:
    """A bookable sub-interval of an availability window."""

    date: date
    start: time
    end: time
    doctor_id: int

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, self.end)


@dataclass(frozen=True)
class BookingCommand:
    """A booking that passed validation and may be written as-is."""

    patient_id: int
    doctor_id: int
    doctor_name: str
    specialty: str
    date: date
    start: time
    duration_minutes: int
    visit_type: str
    modality: Modality
    notes: str | None = None

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)


class RejectionReason(str, Enum):
    DOCTOR_NOT_FOUND = "DoctorNotFound"
    MODALITY_UNSUPPORTED = "ModalityUnsupported"
    SLOT_UNAVAILABLE = "SlotUnavailable"
    LEAD_TIME_VIOLATION = "LeadTimeViolation"


_REJECTION_ERRORS = {
    RejectionReason.DOCTOR_NOT_FOUND: errors.NotFoundError,
    RejectionReason.MODALITY_UNSUPPORTED: errors.ModalityUnsupportedError,
    RejectionReason.SLOT_UNAVAILABLE: errors.SlotUnavailableError,
    RejectionReason.LEAD_TIME_VIOLATION: errors.LeadTimeViolationError,
}


@dataclass(frozen=True)
class BookingRejection:
    """Why a booking request was not admitted."""

    reason: RejectionReason
    message: str

    @property
    def refresh_slots(self) -> bool:
        # Clients must re-query free slots so a stale slot is never offered twice.
        return self.reason is RejectionReason.SLOT_UNAVAILABLE

    def to_error(self) -> errors.SchedulingError:
        return _REJECTION_ERRORS[self.reason](self.message)


@dataclass(frozen=True)
class BookingResult:
    """Outcome of a booking attempt: an appointment or a rejection, never both."""

    appointment: Appointment | None = None
    rejection: BookingRejection | None = None

    @property
    def ok(self) -> bool:
        return self.appointment is not None
