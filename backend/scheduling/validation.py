"""Booking validator: admits or rejects one booking request."""

from datetime import datetime, timedelta

from backend.core import config
from backend.scheduling.availability import get_availability_windows
from backend.scheduling.domain import (
    ACTIVE_STATUSES,
    BookingCommand,
    BookingRejection,
    Modality,
    RejectionReason,
)
from backend.scheduling.schemas import BookingRequest
from backend.scheduling.slots import compute_free_slots
from backend.scheduling.store import SchedulingStore


def validate_booking(
    store: SchedulingStore,
    request: BookingRequest,
    patient_id: int,
    now: datetime | None = None,
    exclude_appointment_id: int | None = None,
    lead_minutes: int | None = None,
) -> BookingCommand | BookingRejection:
    """Run the booking checks in order and stop at the first failure.

    1. the doctor exists, offers the requested specialty and is accepting patients;
    2. the doctor supports the requested modality;
    3. the requested start is still free against persisted appointments
       (``exclude_appointment_id`` is ignored, for reschedules);
    4. the start is strictly in the future and at least the lead time away.
    """
    now = now or datetime.now()
    if lead_minutes is None:
        lead_minutes = config.MIN_BOOKING_LEAD_MINUTES

    doctor = store.get_doctor(request.doctor_id)
    if doctor is None:
        return BookingRejection(RejectionReason.DOCTOR_NOT_FOUND, 'Doctor not found.')
    if not doctor.offers_specialty(request.specialty):
        return BookingRejection(
            RejectionReason.DOCTOR_NOT_FOUND,
            f'{doctor.display_name} does not offer {request.specialty}.',
        )
    if doctor.is_accepting_patients is False:
        return BookingRejection(
            RejectionReason.DOCTOR_NOT_FOUND,
            f'{doctor.display_name} is not accepting new patients.',
        )

    if request.modality is Modality.VIRTUAL and not doctor.is_virtual:
        return BookingRejection(
            RejectionReason.MODALITY_UNSUPPORTED,
            f"{doctor.display_name} doesn't offer virtual appointments.",
        )

    windows = get_availability_windows(store, doctor.id, request.date, request.date)
    appointments = [
        appointment
        for appointment in store.list_appointments(
            doctor_id=doctor.id,
            date_from=request.date,
            date_to=request.date,
            status_in=ACTIVE_STATUSES,
        )
        if appointment.id != exclude_appointment_id
    ]
    start = datetime.combine(request.date, request.time)
    free_starts = {slot.starts_at for slot in compute_free_slots(doctor.id, windows, appointments, request.duration_minutes)}
    if start not in free_starts:
        return BookingRejection(RejectionReason.SLOT_UNAVAILABLE, 'This time is not available. Please pick another slot.')

    earliest = now + timedelta(minutes=lead_minutes)
    if start <= now:
        return BookingRejection(RejectionReason.LEAD_TIME_VIOLATION, 'Appointments must be scheduled in the future.')
    if start < earliest:
        return BookingRejection(
            RejectionReason.LEAD_TIME_VIOLATION,
            f'Appointments must be booked at least {lead_minutes} minutes in advance.',
        )

    return BookingCommand(
        patient_id=patient_id,
        doctor_id=doctor.id,
        doctor_name=doctor.display_name,
        specialty=request.specialty,
        date=request.date,
        start=request.time,
        duration_minutes=request.duration_minutes,
        visit_type=request.visit_type,
        modality=request.modality,
        notes=request.notes,
    )
