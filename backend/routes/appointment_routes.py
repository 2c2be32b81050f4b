from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_actor
from backend.database import get_db
from backend.models.appointment import Appointment
from backend.routes.common import (
    build_booking_service,
    current_time,
    ensure_database_ready,
    rejection_to_http_exception,
    require_role,
    to_http_exception,
)
from backend.scheduling.domain import Actor, AppointmentStatus, Role
from backend.scheduling.errors import SchedulingError
from backend.scheduling.schemas import BookingRequest, normalize_notes
from backend.scheduling.store import SchedulingStore

router = APIRouter(tags=['appointments'])

UPCOMING_PREVIEW_LIMIT = 5


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    doctor_name: str | None = None
    specialty: str | None = None
    appointment_date: date
    start_time: time
    duration_minutes: int
    visit_type: str | None = None
    modality: str
    notes: str | None = None
    status: str
    rescheduled_from_id: int | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StatusChangeRequest(BaseModel):
    status: AppointmentStatus


class NotesUpdateRequest(BaseModel):
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class DoctorAppointmentSummaryResponse(BaseModel):
    scheduled: int
    completed: int
    cancelled: int
    missed: int
    upcoming: list[AppointmentResponse]


def get_visible_appointment(store: SchedulingStore, appointment_id: int, actor: Actor) -> Appointment:
    appointment = store.get_appointment(appointment_id)
    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')

    if actor.role is Role.PATIENT and appointment.patient_id != actor.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the patient who booked this appointment can view it.',
        )
    if actor.role is Role.DOCTOR and appointment.doctor_id != actor.doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the assigned doctor can view this appointment.',
        )
    return appointment


def require_doctor_profile(actor: Actor) -> int:
    require_role(actor, Role.DOCTOR, detail='Only doctors can view their appointment schedule.')
    if actor.doctor_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='No doctor profile is linked to this account.',
        )
    return actor.doctor_id


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookingRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_role(actor, Role.PATIENT, detail='Only patients can schedule appointments.')
    ensure_database_ready()

    try:
        result = build_booking_service(db).submit_booking(data, actor.id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    if not result.ok:
        raise rejection_to_http_exception(result.rejection)
    return result.appointment


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    doctor_id: int | None = Query(default=None),
    patient_id: int | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    appointment_status: list[AppointmentStatus] | None = Query(default=None, alias='status'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_role(actor, Role.ADMIN, detail='Only admins can view all appointments.')
    ensure_database_ready()

    try:
        return SchedulingStore(db).list_appointments(
            doctor_id=doctor_id,
            patient_id=patient_id,
            date_from=date_from,
            date_to=date_to,
            status_in=appointment_status or None,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    upcoming_only: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_role(actor, Role.PATIENT, detail='Only patients can view their own appointments.')
    ensure_database_ready()

    try:
        appointments = SchedulingStore(db).list_appointments(patient_id=actor.id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    if upcoming_only:
        now = current_time()
        appointments = [
            appointment for appointment in appointments
            if appointment.status == AppointmentStatus.SCHEDULED.value and appointment.starts_at > now
        ]
    return appointments


@router.get('/doctor', response_model=list[AppointmentResponse])
def list_doctor_appointments(
    day: date | None = Query(default=None, alias='date'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    doctor_id = require_doctor_profile(actor)
    ensure_database_ready()

    try:
        return SchedulingStore(db).list_appointments(doctor_id=doctor_id, date_from=day, date_to=day)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/doctor/summary', response_model=DoctorAppointmentSummaryResponse)
def summarize_doctor_appointments(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    doctor_id = require_doctor_profile(actor)
    ensure_database_ready()

    try:
        appointments = SchedulingStore(db).list_appointments(doctor_id=doctor_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    counts = {appointment_status: 0 for appointment_status in AppointmentStatus}
    for appointment in appointments:
        counts[AppointmentStatus(appointment.status)] += 1

    now = current_time()
    upcoming = [
        appointment for appointment in appointments
        if appointment.status == AppointmentStatus.SCHEDULED.value and appointment.starts_at > now
    ][:UPCOMING_PREVIEW_LIMIT]

    return DoctorAppointmentSummaryResponse(
        scheduled=counts[AppointmentStatus.SCHEDULED],
        completed=counts[AppointmentStatus.COMPLETED],
        cancelled=counts[AppointmentStatus.CANCELLED],
        missed=counts[AppointmentStatus.MISSED],
        upcoming=[AppointmentResponse.model_validate(appointment) for appointment in upcoming],
    )


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return get_visible_appointment(SchedulingStore(db), appointment_id, actor)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/{appointment_id}/status', response_model=AppointmentResponse)
def change_appointment_status(
    appointment_id: int,
    data: StatusChangeRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return build_booking_service(db).transition_appointment(appointment_id, data.status, actor)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def reschedule_appointment(
    appointment_id: int,
    data: BookingRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_role(actor, Role.PATIENT, detail='Only patients can reschedule their appointments.')
    ensure_database_ready()

    try:
        result = build_booking_service(db).reschedule(appointment_id, data, actor)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    if not result.ok:
        raise rejection_to_http_exception(result.rejection)
    return result.appointment


@router.patch('/{appointment_id}/notes', response_model=AppointmentResponse)
def update_appointment_notes(
    appointment_id: int,
    data: NotesUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_role(actor, Role.DOCTOR, Role.ADMIN, detail='Only doctors and admins can edit appointment notes.')
    ensure_database_ready()

    try:
        return build_booking_service(db).update_notes(appointment_id, data.notes, actor)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
