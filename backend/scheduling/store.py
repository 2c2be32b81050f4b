"""SQLAlchemy-backed persistence for doctors, availability and appointments."""

import logging
import math
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.activity_log import ActivityLog
from backend.models.appointment import Appointment
from backend.models.availability import AvailabilityWindow
from backend.models.doctor import Doctor
from backend.models.notification import Notification
from backend.scheduling.domain import AppointmentStatus, BookingCommand
from backend.scheduling.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    SchedulingError,
    SlotUnavailableError,
)

logger = logging.getLogger(__name__)

DOCTOR_SORT_OPTIONS = ('recommended', 'rating', 'price-low', 'price-high')
SLOT_UNIQUE_INDEX = 'uq_appointments_doctor_slot'
SQLITE_SLOT_CONFLICT = 'UNIQUE constraint failed: appointments.doctor_id, appointments.appointment_date, appointments.start_time'


def _recommended_score(doctor: Doctor) -> tuple[bool, float]:
    score = (doctor.rating or 0) * (math.log(doctor.reviews_count or 1) + 1)
    return bool(doctor.is_featured), score


def _is_slot_conflict(exc: IntegrityError) -> bool:
    diag = getattr(exc.orig, 'diag', None)
    if diag is not None and getattr(diag, 'constraint_name', None):
        return diag.constraint_name == SLOT_UNIQUE_INDEX
    # SQLite reports the columns of the violated index, not its name.
    message = str(exc.orig)
    return SLOT_UNIQUE_INDEX in message or SQLITE_SLOT_CONFLICT in message


def _intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


class SchedulingStore:
    """Record store used by the scheduling core.

    Every read and write goes through this class so no screen or service keeps
    its own copy of appointment data. Storage failures surface as
    ``PersistenceError`` and are not retried here.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _writing(self, conflict_message: str | None = None) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if conflict_message is None or not _is_slot_conflict(exc):
                logger.exception('Scheduling write violated an integrity constraint.')
                raise PersistenceError() from exc
            logger.warning('Write rejected by a uniqueness constraint: %s', exc.orig)
            raise SlotUnavailableError(conflict_message) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Scheduling write failed.')
            raise PersistenceError() from exc
        except SchedulingError:
            self.db.rollback()
            raise

    @contextmanager
    def _reading(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

    def _stage_activity(
        self,
        user_id: int | None,
        action: str,
        entity_id: int,
        details: dict | None = None,
        entity_type: str = 'appointment',
    ) -> None:
        self.db.add(
            ActivityLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                details=details or {},
            )
        )

    # Doctors

    def get_doctor(self, doctor_id: int) -> Doctor | None:
        with self._reading():
            return self.db.query(Doctor).filter(Doctor.id == doctor_id).first()

    def list_doctors(
        self,
        specialty: str | None = None,
        virtual_only: bool = False,
        search: str | None = None,
        location: str | None = None,
        accepting_only: bool = False,
        sort: str = 'recommended',
    ) -> list[Doctor]:
        if sort not in DOCTOR_SORT_OPTIONS:
            raise ValueError(f'Unknown sort option: {sort}')

        with self._reading():
            query = self.db.query(Doctor)
            if virtual_only:
                query = query.filter(Doctor.is_virtual.is_(True))
            if accepting_only:
                query = query.filter(Doctor.is_accepting_patients.is_(True))
            if location:
                query = query.filter(Doctor.location.ilike(f'%{location.strip()}%'))
            doctors = query.order_by(Doctor.id.asc()).all()

        if specialty:
            doctors = [doctor for doctor in doctors if doctor.offers_specialty(specialty)]

        if search:
            needle = search.strip().lower()
            doctors = [
                doctor for doctor in doctors
                if needle in (doctor.display_name or '').lower()
                or needle in (doctor.hospital or '').lower()
                or any(needle in (offered or '').lower() for offered in doctor.specialties or [])
            ]

        if sort == 'rating':
            doctors.sort(key=lambda doctor: doctor.rating or 0, reverse=True)
        elif sort == 'price-low':
            doctors.sort(key=lambda doctor: doctor.consultation_fee or 0)
        elif sort == 'price-high':
            doctors.sort(key=lambda doctor: doctor.consultation_fee or 0, reverse=True)
        else:
            doctors.sort(key=_recommended_score, reverse=True)

        return doctors

    # Availability

    def get_doctor_availability(self, doctor_id: int, start_date: date, end_date: date) -> list[AvailabilityWindow]:
        """Return the raw windows that may apply to any date in the range."""
        with self._reading():
            return self.db.query(AvailabilityWindow).filter(
                AvailabilityWindow.doctor_id == doctor_id,
                or_(
                    AvailabilityWindow.day_of_week.is_not(None),
                    AvailabilityWindow.window_date.between(start_date, end_date),
                ),
            ).order_by(AvailabilityWindow.start_time.asc(), AvailabilityWindow.id.asc()).all()

    def add_availability_window(
        self,
        doctor_id: int,
        start_time: time,
        end_time: time,
        day_of_week: int | None = None,
        window_date: date | None = None,
        slot_minutes: int | None = None,
        is_blocked: bool = False,
        actor_id: int | None = None,
    ) -> AvailabilityWindow:
        window = AvailabilityWindow(
            doctor_id=doctor_id,
            day_of_week=day_of_week,
            window_date=window_date,
            start_time=start_time,
            end_time=end_time,
            slot_minutes=slot_minutes,
            is_blocked=is_blocked,
        )
        with self._writing():
            self.db.add(window)
            self.db.flush()
            self._stage_activity(
                actor_id,
                'block_time' if is_blocked else 'add_availability',
                window.id,
                {'doctor_id': doctor_id},
                entity_type='availability_window',
            )
        with self._reading():
            self.db.refresh(window)
        return window

    def remove_availability_window(self, doctor_id: int, window_id: int, actor_id: int | None = None) -> None:
        with self._writing():
            window = self.db.query(AvailabilityWindow).filter(
                AvailabilityWindow.id == window_id,
                AvailabilityWindow.doctor_id == doctor_id,
            ).first()
            if window is None:
                raise NotFoundError('Availability window not found.')
            self.db.delete(window)
            self._stage_activity(
                actor_id,
                'remove_availability',
                window_id,
                {'doctor_id': doctor_id},
                entity_type='availability_window',
            )

    # Appointments

    def get_appointment(self, appointment_id: int) -> Appointment | None:
        with self._reading():
            return self.db.query(Appointment).filter(Appointment.id == appointment_id).first()

    def list_appointments(
        self,
        doctor_id: int | None = None,
        patient_id: int | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        status_in: Iterable[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        with self._reading():
            query = self.db.query(Appointment)
            if doctor_id is not None:
                query = query.filter(Appointment.doctor_id == doctor_id)
            if patient_id is not None:
                query = query.filter(Appointment.patient_id == patient_id)
            if date_from is not None:
                query = query.filter(Appointment.appointment_date >= date_from)
            if date_to is not None:
                query = query.filter(Appointment.appointment_date <= date_to)
            if status_in is not None:
                query = query.filter(Appointment.status.in_([AppointmentStatus(s).value for s in status_in]))
            return query.order_by(
                Appointment.appointment_date.asc(),
                Appointment.start_time.asc(),
                Appointment.id.asc(),
            ).all()

    def _find_overlap(self, command: BookingCommand) -> Appointment | None:
        candidates = self.db.query(Appointment).filter(
            Appointment.doctor_id == command.doctor_id,
            Appointment.appointment_date == command.date,
            Appointment.status != AppointmentStatus.CANCELLED.value,
        ).all()
        for candidate in candidates:
            candidate_end = candidate.starts_at + timedelta(minutes=candidate.duration_minutes)
            if _intervals_overlap(command.starts_at, command.ends_at, candidate.starts_at, candidate_end):
                return candidate
        return None

    def _compare_and_set_status(
        self,
        appointment_id: int,
        from_status: AppointmentStatus,
        to_status: AppointmentStatus,
    ) -> None:
        updated = self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.status == from_status.value,
        ).update(
            {Appointment.status: to_status.value, Appointment.updated_at: datetime.now()},
            synchronize_session=False,
        )
        if updated:
            return

        current = self.db.query(Appointment.status).filter(Appointment.id == appointment_id).scalar()
        if current is None:
            raise NotFoundError('Appointment not found.')
        raise InvalidTransitionError(
            f'Cannot move an appointment from {current} to {to_status.value}.'
        )

    def create_appointment(
        self,
        command: BookingCommand,
        actor_id: int | None = None,
        replaces_id: int | None = None,
    ) -> Appointment:
        """Insert a scheduled appointment unless its interval is already taken.

        The doctor row is locked for the duration of the transaction and the
        overlap check is repeated against committed rows; the partial unique
        index on (doctor_id, appointment_date, start_time) catches whatever
        slips past a backend that ignores row locks. When ``replaces_id`` is
        given the old appointment is cancelled in the same transaction.
        """
        with self._writing(conflict_message='This time was just booked by someone else.'):
            doctor = self.db.query(Doctor).filter(Doctor.id == command.doctor_id).with_for_update().first()
            if doctor is None:
                raise NotFoundError('Doctor not found.')

            if replaces_id is not None:
                self._compare_and_set_status(replaces_id, AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED)
                self.db.flush()

            if self._find_overlap(command) is not None:
                raise SlotUnavailableError('This time is already booked.')

            appointment = Appointment(
                patient_id=command.patient_id,
                doctor_id=command.doctor_id,
                doctor_name=command.doctor_name,
                specialty=command.specialty,
                appointment_date=command.date,
                start_time=command.start,
                duration_minutes=command.duration_minutes,
                visit_type=command.visit_type,
                modality=command.modality.value,
                notes=command.notes,
                status=AppointmentStatus.SCHEDULED.value,
                rescheduled_from_id=replaces_id,
            )
            self.db.add(appointment)
            self.db.flush()

            if replaces_id is not None:
                self._stage_activity(actor_id, 'reschedule', replaces_id, {'new_appointment_id': appointment.id})
            self._stage_activity(
                actor_id,
                'book',
                appointment.id,
                {
                    'doctor_id': command.doctor_id,
                    'date': command.date.isoformat(),
                    'time': command.start.strftime('%H:%M'),
                },
            )

        with self._reading():
            self.db.refresh(appointment)
        return appointment

    def update_appointment_status(
        self,
        appointment_id: int,
        from_status: AppointmentStatus,
        to_status: AppointmentStatus,
        actor_id: int | None = None,
    ) -> Appointment:
        """Move an appointment between statuses only if it is still in ``from_status``."""
        from_status = AppointmentStatus(from_status)
        to_status = AppointmentStatus(to_status)
        if from_status.is_terminal:
            raise InvalidTransitionError(
                f'{from_status.value.capitalize()} appointments cannot change status.'
            )

        with self._writing():
            self._compare_and_set_status(appointment_id, from_status, to_status)
            self._stage_activity(
                actor_id,
                'status_change',
                appointment_id,
                {'from': from_status.value, 'to': to_status.value},
            )

        return self.get_appointment(appointment_id)

    def update_appointment_notes(self, appointment_id: int, notes: str | None, actor_id: int | None = None) -> Appointment:
        with self._writing():
            appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
            if appointment is None:
                raise NotFoundError('Appointment not found.')
            appointment.notes = notes
            appointment.updated_at = datetime.now()
            self._stage_activity(actor_id, 'update_notes', appointment_id)

        with self._reading():
            self.db.refresh(appointment)
        return appointment

    # Notifications

    def add_notification(
        self,
        user_id: int,
        title: str,
        message: str,
        notification_type: str,
        action_url: str | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=notification_type,
            action_url=action_url,
            is_read=False,
        )
        with self._writing():
            self.db.add(notification)
        with self._reading():
            self.db.refresh(notification)
        return notification

    def list_notifications(self, user_id: int, unread_only: bool = False) -> list[Notification]:
        with self._reading():
            query = self.db.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                query = query.filter(Notification.is_read.is_(False))
            return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    def list_activity(self, entity_type: str, entity_id: int) -> list[ActivityLog]:
        with self._reading():
            return self.db.query(ActivityLog).filter(
                ActivityLog.entity_type == entity_type,
                ActivityLog.entity_id == entity_id,
            ).order_by(ActivityLog.id.asc()).all()

    def mark_notification_read(self, user_id: int, notification_id: int) -> Notification:
        with self._writing():
            notification = self.db.query(Notification).filter(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            ).first()
            if notification is None:
                raise NotFoundError('Notification not found.')
            notification.is_read = True

        with self._reading():
            self.db.refresh(notification)
        return notification
