from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_actor
from backend.core import config
from backend.database import get_db
from backend.routes.common import (
    build_booking_service,
    current_time,
    ensure_database_ready,
    require_role,
    to_http_exception,
)
from backend.scheduling.availability import get_availability_windows
from backend.scheduling.domain import ACTIVE_STATUSES, VISIT_DURATIONS, Actor, Role, TimeSlot
from backend.scheduling.errors import SchedulingError
from backend.scheduling.store import DOCTOR_SORT_OPTIONS, SchedulingStore

router = APIRouter(tags=['doctors'])


class DoctorResponse(BaseModel):
    id: int
    display_name: str
    specialties: list[str]
    is_virtual: bool
    consultation_fee: float | None = None
    slot_minutes: int | None = None
    location: str | None = None
    hospital: str | None = None
    rating: float | None = None
    reviews_count: int | None = None
    is_featured: bool | None = None
    is_accepting_patients: bool | None = None

    class Config:
        from_attributes = True


class VisitTypeOptionResponse(BaseModel):
    visit_type: str
    duration_minutes: int


class AvailabilityWindowResponse(BaseModel):
    date: date
    start_time: time
    end_time: time
    slot_minutes: int


class StoredAvailabilityWindowResponse(BaseModel):
    id: int
    doctor_id: int
    day_of_week: int | None = None
    window_date: date | None = None
    start_time: time
    end_time: time
    slot_minutes: int | None = None
    is_blocked: bool

    class Config:
        from_attributes = True


class CreateAvailabilityWindowRequest(BaseModel):
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    window_date: date | None = None
    start_time: time
    end_time: time
    slot_minutes: int | None = Field(default=None, ge=5, le=240)
    is_blocked: bool = False

    @model_validator(mode='after')
    def validate_window(self) -> 'CreateAvailabilityWindowRequest':
        if (self.day_of_week is None) == (self.window_date is None):
            raise ValueError('Provide either a day of the week or a specific date.')
        if self.start_time >= self.end_time:
            raise ValueError('The window must end after it starts.')
        return self


class TimeSlotResponse(BaseModel):
    date: date
    time: time
    start_time: datetime
    end_time: datetime
    duration_minutes: int


class CalendarDayResponse(BaseModel):
    date: date
    slots: list[TimeSlotResponse]


def to_slot_response(slot: TimeSlot) -> TimeSlotResponse:
    return TimeSlotResponse(
        date=slot.date,
        time=slot.start,
        start_time=slot.starts_at,
        end_time=slot.ends_at,
        duration_minutes=int((slot.ends_at - slot.starts_at).total_seconds() // 60),
    )


def normalize_visit_type(visit_type: str | None) -> str | None:
    if visit_type is None:
        return None

    normalized = visit_type.strip().lower()
    if normalized not in VISIT_DURATIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid visit type.',
        )
    return normalized


def ensure_can_edit_availability(actor: Actor, doctor_id: int) -> None:
    require_role(actor, Role.DOCTOR, Role.ADMIN, detail='Only doctors and admins can change availability.')
    if actor.role is Role.DOCTOR and actor.doctor_id != doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Doctors can only change their own availability.',
        )


def block_covers_booking(
    store: SchedulingStore,
    doctor_id: int,
    data: CreateAvailabilityWindowRequest,
    today: date,
) -> bool:
    """Whether a new blocked window would sit on top of a booked appointment.

    Dated blocks are checked against that date; recurring blocks against every
    booking from ``today`` on that falls on the same weekday.
    """
    if data.window_date is not None:
        booked = store.list_appointments(
            doctor_id=doctor_id,
            date_from=data.window_date,
            date_to=data.window_date,
            status_in=ACTIVE_STATUSES,
        )
    else:
        booked = [
            appointment
            for appointment in store.list_appointments(doctor_id=doctor_id, date_from=today, status_in=ACTIVE_STATUSES)
            if appointment.appointment_date.weekday() == data.day_of_week
        ]

    for appointment in booked:
        block_start = datetime.combine(appointment.appointment_date, data.start_time)
        block_end = datetime.combine(appointment.appointment_date, data.end_time)
        appointment_end = appointment.starts_at + timedelta(minutes=appointment.duration_minutes)
        if appointment.starts_at < block_end and appointment_end > block_start:
            return True
    return False


@router.get('', response_model=list[DoctorResponse])
def list_doctors(
    specialty: str | None = Query(default=None),
    virtual_only: bool = Query(default=False),
    search: str | None = Query(default=None),
    location: str | None = Query(default=None),
    accepting_only: bool = Query(default=False),
    sort: str = Query(default='recommended'),
    db: Session = Depends(get_db),
):
    if sort not in DOCTOR_SORT_OPTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Sort must be one of: {', '.join(DOCTOR_SORT_OPTIONS)}.",
        )

    try:
        return SchedulingStore(db).list_doctors(
            specialty=specialty,
            virtual_only=virtual_only,
            search=search,
            location=location,
            accepting_only=accepting_only,
            sort=sort,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/visit-types', response_model=list[VisitTypeOptionResponse])
def list_visit_types():
    return [
        VisitTypeOptionResponse(visit_type=visit_type, duration_minutes=duration_minutes)
        for visit_type, duration_minutes in VISIT_DURATIONS.items()
    ]


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    try:
        doctor = SchedulingStore(db).get_doctor(doctor_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    if doctor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.')
    return doctor


@router.get('/{doctor_id}/availability', response_model=list[AvailabilityWindowResponse])
def list_doctor_availability(
    doctor_id: int,
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db),
):
    if end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='The end date must not be before the start date.',
        )
    if (end - start).days >= config.BOOKING_HORIZON_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Availability can be listed for at most {config.BOOKING_HORIZON_DAYS} days at a time.',
        )

    ensure_database_ready()

    try:
        windows = get_availability_windows(SchedulingStore(db), doctor_id, start, end)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [
        AvailabilityWindowResponse(
            date=window.date,
            start_time=window.start,
            end_time=window.end,
            slot_minutes=window.slot_minutes,
        )
        for window in windows
    ]


@router.post(
    '/{doctor_id}/availability',
    response_model=StoredAvailabilityWindowResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_availability_window(
    doctor_id: int,
    data: CreateAvailabilityWindowRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_can_edit_availability(actor, doctor_id)
    ensure_database_ready()

    store = SchedulingStore(db)
    try:
        if store.get_doctor(doctor_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.')

        if data.is_blocked and block_covers_booking(store, doctor_id, data, current_time().date()):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This time is already booked by a patient appointment.',
            )

        return store.add_availability_window(
            doctor_id,
            data.start_time,
            data.end_time,
            day_of_week=data.day_of_week,
            window_date=data.window_date,
            slot_minutes=data.slot_minutes,
            is_blocked=data.is_blocked,
            actor_id=actor.id,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.delete('/{doctor_id}/availability/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_availability_window(
    doctor_id: int,
    window_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_can_edit_availability(actor, doctor_id)
    ensure_database_ready()

    try:
        SchedulingStore(db).remove_availability_window(doctor_id, window_id, actor_id=actor.id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/{doctor_id}/slots', response_model=list[TimeSlotResponse])
def list_free_slots(
    doctor_id: int,
    day: date = Query(..., alias='date'),
    visit_type: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    normalized_visit_type = normalize_visit_type(visit_type)
    ensure_database_ready()

    try:
        slots = build_booking_service(db).get_free_slots(doctor_id, day, normalized_visit_type)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [to_slot_response(slot) for slot in slots]


@router.get('/{doctor_id}/calendar', response_model=list[CalendarDayResponse])
def list_calendar(
    doctor_id: int,
    start: date = Query(...),
    days: int = Query(default=14, ge=1, le=config.BOOKING_HORIZON_DAYS),
    visit_type: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    normalized_visit_type = normalize_visit_type(visit_type)
    ensure_database_ready()

    try:
        calendar = build_booking_service(db).get_calendar(doctor_id, start, days, normalized_visit_type)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [
        CalendarDayResponse(date=day, slots=[to_slot_response(slot) for slot in slots])
        for day, slots in calendar.items()
    ]
