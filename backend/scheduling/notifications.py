"""In-app notifications for booking events."""

import logging

from backend.models.appointment import Appointment
from backend.scheduling.domain import Actor, AppointmentStatus, Role
from backend.scheduling.errors import PersistenceError
from backend.scheduling.store import SchedulingStore

logger = logging.getLogger(__name__)

STATUS_TITLES = {
    AppointmentStatus.COMPLETED: 'Appointment completed',
    AppointmentStatus.CANCELLED: 'Appointment cancelled',
    AppointmentStatus.MISSED: 'Appointment marked as missed',
}


def describe_when(appointment: Appointment) -> str:
    return f"{appointment.starts_at:%B %d, %Y} at {appointment.starts_at:%I:%M %p}"


class NotificationService:
    """Writes notification rows; a failed write never undoes the booking it reports."""

    def __init__(self, store: SchedulingStore):
        self.store = store

    def _send(self, user_id: int | None, title: str, message: str, notification_type: str, appointment: Appointment) -> None:
        if user_id is None:
            logger.info('No user to notify about appointment %s (%s).', appointment.id, notification_type)
            return
        try:
            self.store.add_notification(
                user_id=user_id,
                title=title,
                message=message,
                notification_type=notification_type,
                action_url=f'/appointments/{appointment.id}',
            )
        except PersistenceError:
            logger.exception('Could not store %s notification for appointment %s.', notification_type, appointment.id)

    def _doctor_user_id(self, appointment: Appointment) -> int | None:
        try:
            doctor = self.store.get_doctor(appointment.doctor_id)
        except PersistenceError:
            logger.exception('Could not look up doctor %s to notify.', appointment.doctor_id)
            return None
        return doctor.user_id if doctor is not None else None

    def appointment_booked(self, appointment: Appointment, rescheduled: bool = False) -> None:
        modality = 'virtual consultation' if appointment.modality == 'virtual' else 'in-person visit'
        when = describe_when(appointment)

        self._send(
            appointment.patient_id,
            'Appointment rescheduled' if rescheduled else 'Appointment booked',
            f'Your {modality} with {appointment.doctor_name} has been scheduled for {when}.',
            'appointment_confirmation',
            appointment,
        )
        self._send(
            self._doctor_user_id(appointment),
            'Appointment rescheduled' if rescheduled else 'New appointment',
            f'A patient booked a {modality} ({appointment.visit_type}) for {when}.',
            'appointment_booked',
            appointment,
        )

    def appointment_status_changed(self, appointment: Appointment, actor: Actor) -> None:
        status = AppointmentStatus(appointment.status)
        when = describe_when(appointment)

        if actor.role is Role.PATIENT:
            self._send(
                self._doctor_user_id(appointment),
                STATUS_TITLES[status],
                f'The patient cancelled their appointment on {when}.',
                'appointment_status',
                appointment,
            )
            return

        self._send(
            appointment.patient_id,
            STATUS_TITLES[status],
            f'Your appointment with {appointment.doctor_name} on {when} was marked as {status.value}.',
            'appointment_status',
            appointment,
        )
