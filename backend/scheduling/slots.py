"""Slot matcher: free, bookable start times for a doctor."""

from collections.abc import Iterable
from datetime import date, datetime, timedelta

from backend.core import config
from backend.models.appointment import Appointment
from backend.scheduling.availability import get_availability_windows
from backend.scheduling.domain import ACTIVE_STATUSES, AppointmentStatus, AvailabilityWindow, TimeSlot
from backend.scheduling.store import SchedulingStore


def occupied_intervals(appointments: Iterable[Appointment]) -> list[tuple[datetime, datetime]]:
    intervals = []
    for appointment in appointments:
        if AppointmentStatus(appointment.status) is AppointmentStatus.CANCELLED:
            continue
        start = appointment.starts_at
        intervals.append((start, start + timedelta(minutes=appointment.duration_minutes)))
    return intervals


def compute_free_slots(
    doctor_id: int,
    windows: Iterable[AvailabilityWindow],
    appointments: Iterable[Appointment],
    duration_minutes: int | None = None,
    not_before: datetime | None = None,
) -> list[TimeSlot]:
    """Discretise windows into slots and drop the taken or elapsed ones.

    Candidate starts step through each window at its granularity. A start is
    kept when ``duration_minutes`` (the window granularity if omitted) fits
    inside the window without touching an occupied interval, and, if
    ``not_before`` is given, when it lies strictly after it.
    """
    busy = occupied_intervals(appointments)
    slots: dict[datetime, TimeSlot] = {}

    for window in windows:
        step = timedelta(minutes=window.slot_minutes)
        length = timedelta(minutes=duration_minutes or window.slot_minutes)
        current = window.starts_at

        while current + length <= window.ends_at:
            slot_end = current + length
            is_free = not any(busy_start < slot_end and busy_end > current for busy_start, busy_end in busy)

            if is_free and (not_before is None or current > not_before) and current not in slots:
                slots[current] = TimeSlot(
                    date=window.date,
                    start=current.time(),
                    end=slot_end.time(),
                    doctor_id=doctor_id,
                )

            current += step

    return [slots[start] for start in sorted(slots)]


def get_free_slots(
    store: SchedulingStore,
    doctor_id: int,
    day: date,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> list[TimeSlot]:
    """Free slot starts for one doctor on one date, ascending.

    An empty list means nothing is free; unknown doctors raise ``NotFoundError``.
    """
    windows = get_availability_windows(store, doctor_id, day, day)
    if not windows:
        return []

    appointments = store.list_appointments(
        doctor_id=doctor_id,
        date_from=day,
        date_to=day,
        status_in=ACTIVE_STATUSES,
    )
    return compute_free_slots(doctor_id, windows, appointments, duration_minutes, not_before=now or datetime.now())


def get_free_slots_for_range(
    store: SchedulingStore,
    doctor_id: int,
    start_date: date,
    days: int,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> dict[date, list[TimeSlot]]:
    if days < 1:
        raise ValueError('At least one day must be requested.')

    days = min(days, config.BOOKING_HORIZON_DAYS)
    end_date = start_date + timedelta(days=days - 1)
    windows = get_availability_windows(store, doctor_id, start_date, end_date)
    appointments = store.list_appointments(
        doctor_id=doctor_id,
        date_from=start_date,
        date_to=end_date,
        status_in=ACTIVE_STATUSES,
    )
    now = now or datetime.now()

    calendar: dict[date, list[TimeSlot]] = {}
    for offset in range(days):
        day = start_date + timedelta(days=offset)
        calendar[day] = compute_free_slots(
            doctor_id,
            [window for window in windows if window.date == day],
            [appointment for appointment in appointments if appointment.appointment_date == day],
            duration_minutes,
            not_before=now,
        )
    return calendar
