from dataclasses import replace
from datetime import date, time

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from backend.scheduling.domain import AppointmentStatus, BookingCommand, Modality
from backend.scheduling.errors import InvalidTransitionError, NotFoundError, PersistenceError, SlotUnavailableError

BOOKING_DAY = date(2025, 4, 10)


def make_command(patient_id: int, doctor, start: time = time(9, 0)) -> BookingCommand:
    return BookingCommand(
        patient_id=patient_id,
        doctor_id=doctor.id,
        doctor_name=doctor.display_name,
        specialty='Cardiology',
        date=BOOKING_DAY,
        start=start,
        duration_minutes=30,
        visit_type='consultation',
        modality=Modality.IN_PERSON,
    )


def test_create_appointment_rejects_overlapping_interval(store, users, doctor, make_appointment) -> None:
    make_appointment(time(8, 45), duration_minutes=30)

    with pytest.raises(SlotUnavailableError) as exception_info:
        store.create_appointment(make_command(users['patient'].id, doctor))

    assert exception_info.value.message == 'This time is already booked.'
    assert len(store.list_appointments(doctor_id=doctor.id)) == 1


def test_unique_slot_index_catches_what_the_overlap_check_misses(store, users, doctor, make_appointment, monkeypatch) -> None:
    make_appointment(time(9, 0))
    monkeypatch.setattr(store, '_find_overlap', lambda command: None)

    with pytest.raises(SlotUnavailableError) as exception_info:
        store.create_appointment(make_command(users['other_patient'].id, doctor))

    assert exception_info.value.message == 'This time was just booked by someone else.'
    assert len(store.list_appointments(doctor_id=doctor.id)) == 1


def test_other_integrity_errors_are_not_slot_conflicts(store, users, doctor, monkeypatch) -> None:
    def broken_commit():
        raise IntegrityError('INSERT', {}, Exception('NOT NULL constraint failed: appointments.patient_id'))

    monkeypatch.setattr(store.db, 'commit', broken_commit)

    with pytest.raises(PersistenceError):
        store.create_appointment(make_command(users['patient'].id, doctor))


def test_cancelled_rows_do_not_hold_the_unique_slot(store, users, doctor, make_appointment) -> None:
    make_appointment(time(9, 0), status='cancelled')

    appointment = store.create_appointment(make_command(users['other_patient'].id, doctor))

    assert appointment.status == 'scheduled'
    assert len(store.list_appointments(doctor_id=doctor.id)) == 2


def test_create_appointment_for_unknown_doctor_is_not_found(store, users, doctor) -> None:
    command = replace(make_command(users['patient'].id, doctor), doctor_id=999)

    with pytest.raises(NotFoundError):
        store.create_appointment(command)


def test_status_update_is_compare_and_swap(store, make_appointment) -> None:
    appointment = make_appointment(time(9, 0))

    updated = store.update_appointment_status(appointment.id, AppointmentStatus.SCHEDULED, AppointmentStatus.MISSED)
    assert updated.status == 'missed'

    # A second writer that still believes the row is scheduled loses.
    with pytest.raises(InvalidTransitionError):
        store.update_appointment_status(appointment.id, AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED)

    assert store.get_appointment(appointment.id).status == 'missed'


def test_status_update_of_missing_row_is_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.update_appointment_status(404, AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED)


def test_list_appointments_filters_and_orders(store, users, doctor, make_appointment) -> None:
    later = make_appointment(time(11, 0))
    earlier = make_appointment(time(9, 0))
    make_appointment(time(10, 0), status='cancelled')
    make_appointment(time(9, 0), day=date(2025, 4, 11), patient_id=users['other_patient'].id)

    scheduled = store.list_appointments(
        doctor_id=doctor.id,
        date_from=BOOKING_DAY,
        date_to=BOOKING_DAY,
        status_in=[AppointmentStatus.SCHEDULED],
    )
    mine = store.list_appointments(patient_id=users['patient'].id)

    assert [appointment.id for appointment in scheduled] == [earlier.id, later.id]
    assert len(mine) == 3


def test_list_doctors_filters_and_sorts(store, doctor, virtual_doctor) -> None:
    assert [d.id for d in store.list_doctors(specialty='neurology')] == [virtual_doctor.id]
    assert [d.id for d in store.list_doctors(virtual_only=True)] == [virtual_doctor.id]
    assert [d.id for d in store.list_doctors(search='riverside')] == [doctor.id]
    assert [d.id for d in store.list_doctors(location='memphis')] == [doctor.id]
    assert [d.id for d in store.list_doctors(sort='price-low')] == [virtual_doctor.id, doctor.id]
    assert [d.id for d in store.list_doctors(sort='price-high')] == [doctor.id, virtual_doctor.id]
    assert [d.id for d in store.list_doctors()] == [virtual_doctor.id, doctor.id]


def test_list_doctors_rejects_unknown_sort(store) -> None:
    with pytest.raises(ValueError):
        store.list_doctors(sort='distance')


def test_availability_windows_can_be_added_and_removed(store, users, doctor) -> None:
    window = store.add_availability_window(
        doctor.id,
        time(13, 0),
        time(14, 0),
        window_date=BOOKING_DAY,
        is_blocked=True,
        actor_id=users['doctor'].id,
    )

    window_id = window.id
    assert store.get_doctor_availability(doctor.id, BOOKING_DAY, BOOKING_DAY) == [window]

    store.remove_availability_window(doctor.id, window_id, actor_id=users['doctor'].id)

    assert store.get_doctor_availability(doctor.id, BOOKING_DAY, BOOKING_DAY) == []
    assert [entry.action for entry in store.list_activity('availability_window', window_id)] == [
        'block_time',
        'remove_availability',
    ]
    with pytest.raises(NotFoundError):
        store.remove_availability_window(doctor.id, window_id)


def test_storage_failures_surface_as_persistence_error(store, monkeypatch) -> None:
    def broken_query(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr(store.db, 'query', broken_query)

    with pytest.raises(PersistenceError):
        store.get_appointment(1)


def test_refresh_failure_after_commit_surfaces_as_persistence_error(store, users, monkeypatch) -> None:
    def broken_refresh(instance):
        raise OperationalError('SELECT 1', {}, Exception('connection reset'))

    monkeypatch.setattr(store.db, 'refresh', broken_refresh)

    with pytest.raises(PersistenceError):
        store.add_notification(users['patient'].id, 'Reminder', 'Tomorrow at 9.', 'appointment_reminder')


def test_notifications_can_be_listed_and_marked_read(store, users) -> None:
    first = store.add_notification(users['patient'].id, 'Appointment booked', 'See you soon.', 'appointment_confirmation')
    store.add_notification(users['patient'].id, 'Reminder', 'Tomorrow at 9.', 'appointment_reminder')

    store.mark_notification_read(users['patient'].id, first.id)

    unread = store.list_notifications(users['patient'].id, unread_only=True)
    assert [notification.title for notification in unread] == ['Reminder']
    with pytest.raises(NotFoundError):
        store.mark_notification_read(users['other_patient'].id, first.id)
