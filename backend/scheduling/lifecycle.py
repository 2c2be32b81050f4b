"""Appointment status state machine and the role rules around it."""

import logging
from datetime import datetime, timedelta

from backend.core import config
from backend.models.appointment import Appointment
from backend.scheduling.domain import Actor, AppointmentStatus, Role
from backend.scheduling.errors import InvalidTransitionError, NotFoundError, PermissionDeniedError
from backend.scheduling.schemas import normalize_notes
from backend.scheduling.store import SchedulingStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.MISSED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.MISSED: frozenset(),
}
STAFF_ONLY_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.MISSED})


def ensure_can_manage(appointment: Appointment, actor: Actor) -> None:
    if not actor.is_staff:
        raise PermissionDeniedError('Only doctors and admins can manage appointments.')
    if actor.role is Role.DOCTOR and (actor.doctor_id is None or appointment.doctor_id != actor.doctor_id):
        raise PermissionDeniedError('Only the assigned doctor can manage this appointment.')


def check_transition(
    appointment: Appointment,
    to_status: AppointmentStatus,
    actor: Actor,
    now: datetime,
) -> AppointmentStatus:
    """Raise unless ``actor`` may move ``appointment`` to ``to_status`` at ``now``.

    Returns the appointment's current status.
    """
    current = AppointmentStatus(appointment.status)
    to_status = AppointmentStatus(to_status)

    if to_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f'Cannot move an appointment from {current.value} to {to_status.value}.')

    if actor.role is Role.PATIENT:
        if appointment.patient_id != actor.id:
            raise PermissionDeniedError('Only the patient who booked this appointment can change it.')
        if to_status in STAFF_ONLY_STATUSES:
            raise PermissionDeniedError('Patients can only cancel their appointments.')
        cutoff = appointment.starts_at - timedelta(minutes=config.PATIENT_CANCEL_CUTOFF_MINUTES)
        if now >= cutoff:
            raise InvalidTransitionError('Appointments can only be cancelled before they start.')
        return current

    ensure_can_manage(appointment, actor)

    if to_status in STAFF_ONLY_STATUSES and now < appointment.starts_at:
        raise InvalidTransitionError(
            f'An appointment can only be marked {to_status.value} after its scheduled time has passed.'
        )

    return current


def transition_appointment(
    store: SchedulingStore,
    appointment_id: int,
    to_status: AppointmentStatus,
    actor: Actor,
    now: datetime | None = None,
    notifier=None,
) -> Appointment:
    appointment = store.get_appointment(appointment_id)
    if appointment is None:
        raise NotFoundError('Appointment not found.')

    to_status = AppointmentStatus(to_status)
    try:
        current = check_transition(appointment, to_status, actor, now or datetime.now())
    except (InvalidTransitionError, PermissionDeniedError) as exc:
        logger.warning(
            'Rejected status change of appointment %s to %s by %s %s: %s',
            appointment_id, to_status.value, actor.role.value, actor.id, exc.message,
        )
        raise

    updated = store.update_appointment_status(appointment_id, current, to_status, actor_id=actor.id)
    logger.info(
        'Appointment %s moved from %s to %s by %s %s',
        appointment_id, current.value, to_status.value, actor.role.value, actor.id,
    )

    if notifier is not None:
        notifier.appointment_status_changed(updated, actor)
    return updated


def update_appointment_notes(
    store: SchedulingStore,
    appointment_id: int,
    notes: str | None,
    actor: Actor,
) -> Appointment:
    appointment = store.get_appointment(appointment_id)
    if appointment is None:
        raise NotFoundError('Appointment not found.')

    ensure_can_manage(appointment, actor)
    return store.update_appointment_notes(appointment_id, normalize_notes(notes), actor_id=actor.id)
