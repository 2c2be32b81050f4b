"""Booking orchestrator: the only code path that creates appointments."""

import logging
from collections.abc import Callable
from datetime import date, datetime

from backend.models.appointment import Appointment
from backend.scheduling import lifecycle
from backend.scheduling.domain import (
    VISIT_DURATIONS,
    Actor,
    AppointmentStatus,
    BookingRejection,
    BookingResult,
    RejectionReason,
    Role,
    TimeSlot,
)
from backend.scheduling.errors import NotFoundError, PermissionDeniedError, SlotUnavailableError
from backend.scheduling.notifications import NotificationService
from backend.scheduling.schemas import BookingRequest
from backend.scheduling.slots import get_free_slots, get_free_slots_for_range
from backend.scheduling.store import SchedulingStore
from backend.scheduling.validation import validate_booking

logger = logging.getLogger(__name__)


class BookingService:
    """Entry point shared by the booking wizard and the doctor-search dialog."""

    def __init__(
        self,
        store: SchedulingStore,
        notifier: NotificationService | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    def get_free_slots(self, doctor_id: int, day: date, visit_type: str | None = None) -> list[TimeSlot]:
        duration = VISIT_DURATIONS[visit_type] if visit_type else None
        return get_free_slots(self.store, doctor_id, day, duration, now=self.clock())

    def get_calendar(
        self,
        doctor_id: int,
        start_date: date,
        days: int,
        visit_type: str | None = None,
    ) -> dict[date, list[TimeSlot]]:
        duration = VISIT_DURATIONS[visit_type] if visit_type else None
        return get_free_slots_for_range(self.store, doctor_id, start_date, days, duration, now=self.clock())

    def _commit(self, outcome, actor_id: int, replaces_id: int | None = None) -> BookingResult:
        if isinstance(outcome, BookingRejection):
            logger.info('Booking rejected (%s): %s', outcome.reason.value, outcome.message)
            return BookingResult(rejection=outcome)

        try:
            appointment = self.store.create_appointment(outcome, actor_id=actor_id, replaces_id=replaces_id)
        except SlotUnavailableError as exc:
            logger.warning(
                'Slot %s %s with doctor %s was taken before commit.',
                outcome.date, outcome.start, outcome.doctor_id,
            )
            return BookingResult(rejection=BookingRejection(RejectionReason.SLOT_UNAVAILABLE, exc.message))

        logger.info(
            'Appointment %s booked with doctor %s on %s at %s',
            appointment.id, appointment.doctor_id, appointment.appointment_date, appointment.start_time,
        )
        if self.notifier is not None:
            self.notifier.appointment_booked(appointment, rescheduled=replaces_id is not None)
        return BookingResult(appointment=appointment)

    def submit_booking(self, request: BookingRequest, patient_id: int) -> BookingResult:
        outcome = validate_booking(self.store, request, patient_id, now=self.clock())
        return self._commit(outcome, actor_id=patient_id)

    def reschedule(self, appointment_id: int, request: BookingRequest, actor: Actor) -> BookingResult:
        """Cancel an appointment and book its replacement in one step.

        The old row keeps its history as ``cancelled``; the new one points back
        to it through ``rescheduled_from_id``.
        """
        existing = self.store.get_appointment(appointment_id)
        if existing is None:
            raise NotFoundError('Appointment not found.')
        if actor.role is not Role.PATIENT:
            raise PermissionDeniedError('Only the patient who booked this appointment can reschedule it.')

        lifecycle.check_transition(existing, AppointmentStatus.CANCELLED, actor, self.clock())

        outcome = validate_booking(
            self.store,
            request,
            existing.patient_id,
            now=self.clock(),
            exclude_appointment_id=existing.id,
        )
        return self._commit(outcome, actor_id=actor.id, replaces_id=existing.id)

    def transition_appointment(self, appointment_id: int, to_status: AppointmentStatus, actor: Actor) -> Appointment:
        return lifecycle.transition_appointment(
            self.store,
            appointment_id,
            to_status,
            actor,
            now=self.clock(),
            notifier=self.notifier,
        )

    def update_notes(self, appointment_id: int, notes: str | None, actor: Actor) -> Appointment:
        return lifecycle.update_appointment_notes(self.store, appointment_id, notes, actor)
