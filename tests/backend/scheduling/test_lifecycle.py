from datetime import datetime, time

import pytest

from backend.scheduling import lifecycle
from backend.scheduling.domain import Actor, AppointmentStatus, Role
from backend.scheduling.errors import InvalidTransitionError, NotFoundError, PermissionDeniedError

BEFORE_VISIT = datetime(2025, 4, 9, 8, 0)
AFTER_VISIT = datetime(2025, 4, 10, 10, 0)

TERMINAL_STATUSES = [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.MISSED]


def test_cancelled_appointment_cannot_be_completed(store, make_appointment, doctor_actor) -> None:
    appointment = make_appointment(time(9, 0), status='cancelled')

    with pytest.raises(InvalidTransitionError):
        lifecycle.transition_appointment(store, appointment.id, AppointmentStatus.COMPLETED, doctor_actor, now=AFTER_VISIT)


@pytest.mark.parametrize('from_status', TERMINAL_STATUSES)
@pytest.mark.parametrize('to_status', list(AppointmentStatus))
def test_terminal_statuses_never_change(store, make_appointment, admin_actor, from_status, to_status) -> None:
    appointment = make_appointment(time(9, 0), status=from_status.value)

    with pytest.raises(InvalidTransitionError):
        lifecycle.transition_appointment(store, appointment.id, to_status, admin_actor, now=AFTER_VISIT)

    with pytest.raises(InvalidTransitionError):
        store.update_appointment_status(appointment.id, from_status, to_status)

    assert store.get_appointment(appointment.id).status == from_status.value


def test_patient_can_cancel_own_appointment_before_it_starts(store, make_appointment, patient_actor) -> None:
    appointment = make_appointment(time(9, 0))

    updated = lifecycle.transition_appointment(
        store, appointment.id, AppointmentStatus.CANCELLED, patient_actor, now=BEFORE_VISIT,
    )

    assert updated.status == 'cancelled'


def test_patient_cannot_cancel_after_start(store, make_appointment, patient_actor) -> None:
    appointment = make_appointment(time(9, 0))

    with pytest.raises(InvalidTransitionError):
        lifecycle.transition_appointment(store, appointment.id, AppointmentStatus.CANCELLED, patient_actor, now=AFTER_VISIT)


def test_patient_cannot_cancel_someone_elses_appointment(store, users, make_appointment) -> None:
    appointment = make_appointment(time(9, 0))
    intruder = Actor(id=users['other_patient'].id, role=Role.PATIENT)

    with pytest.raises(PermissionDeniedError):
        lifecycle.transition_appointment(store, appointment.id, AppointmentStatus.CANCELLED, intruder, now=BEFORE_VISIT)


@pytest.mark.parametrize('to_status', [AppointmentStatus.COMPLETED, AppointmentStatus.MISSED])
def test_patients_cannot_complete_or_miss(store, make_appointment, patient_actor, to_status) -> None:
    appointment = make_appointment(time(9, 0))

    with pytest.raises(PermissionDeniedError):
        lifecycle.transition_appointment(store, appointment.id, to_status, patient_actor, now=AFTER_VISIT)


@pytest.mark.parametrize('to_status', [AppointmentStatus.COMPLETED, AppointmentStatus.MISSED])
def test_staff_can_close_out_only_after_start(store, make_appointment, doctor_actor, to_status) -> None:
    appointment = make_appointment(time(9, 0))

    with pytest.raises(InvalidTransitionError):
        lifecycle.transition_appointment(store, appointment.id, to_status, doctor_actor, now=BEFORE_VISIT)

    updated = lifecycle.transition_appointment(store, appointment.id, to_status, doctor_actor, now=AFTER_VISIT)

    assert updated.status == to_status.value


def test_doctor_can_cancel_any_time(store, make_appointment, doctor_actor) -> None:
    appointment = make_appointment(time(9, 0))

    updated = lifecycle.transition_appointment(
        store, appointment.id, AppointmentStatus.CANCELLED, doctor_actor, now=AFTER_VISIT,
    )

    assert updated.status == 'cancelled'


def test_other_doctor_cannot_manage_appointment(store, users, virtual_doctor, make_appointment) -> None:
    appointment = make_appointment(time(9, 0))
    stranger = Actor(id=users['other_doctor'].id, role=Role.DOCTOR, doctor_id=virtual_doctor.id)

    with pytest.raises(PermissionDeniedError):
        lifecycle.transition_appointment(store, appointment.id, AppointmentStatus.COMPLETED, stranger, now=AFTER_VISIT)


def test_transition_of_missing_appointment_is_not_found(store, admin_actor) -> None:
    with pytest.raises(NotFoundError):
        lifecycle.transition_appointment(store, 404, AppointmentStatus.CANCELLED, admin_actor, now=AFTER_VISIT)


def test_transition_notifies_and_records_activity(store, users, make_appointment, patient_actor) -> None:
    appointment = make_appointment(time(9, 0))
    sent = []

    class RecordingNotifier:
        def appointment_status_changed(self, changed, actor):
            sent.append((changed.id, changed.status, actor.role))

    lifecycle.transition_appointment(
        store,
        appointment.id,
        AppointmentStatus.CANCELLED,
        patient_actor,
        now=BEFORE_VISIT,
        notifier=RecordingNotifier(),
    )

    assert sent == [(appointment.id, 'cancelled', Role.PATIENT)]
    activity = store.list_activity('appointment', appointment.id)
    assert [entry.action for entry in activity] == ['status_change']
    assert activity[0].details == {'from': 'scheduled', 'to': 'cancelled'}


def test_notes_are_editable_by_assigned_doctor_only(store, make_appointment, doctor_actor, patient_actor) -> None:
    appointment = make_appointment(time(9, 0))

    updated = lifecycle.update_appointment_notes(store, appointment.id, '  Bring prior ECG.  ', doctor_actor)
    assert updated.notes == 'Bring prior ECG.'

    with pytest.raises(PermissionDeniedError) as exception_info:
        lifecycle.update_appointment_notes(store, appointment.id, 'hello', patient_actor)
    assert exception_info.value.message == 'Only doctors and admins can manage appointments.'
