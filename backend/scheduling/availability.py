"""Availability model: a doctor's working windows per date, ignoring bookings."""

from datetime import date, time, timedelta

from backend.core import config
from backend.models.availability import AvailabilityWindow as AvailabilityWindowRow
from backend.scheduling.domain import AvailabilityWindow
from backend.scheduling.errors import NotFoundError
from backend.scheduling.store import SchedulingStore


def _to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _to_time(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def iterate_dates(start_date: date, end_date: date):
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def applies_on(row: AvailabilityWindowRow, day: date) -> bool:
    if row.window_date is not None:
        return row.window_date == day
    return row.day_of_week == day.weekday()


def merge_intervals(intervals: list[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def subtract_intervals(intervals: list[tuple[int, int]], removed: list[tuple[int, int]]) -> list[tuple[int, int]]:
    remaining = intervals
    for cut_start, cut_end in removed:
        pieces = []
        for start, end in remaining:
            if cut_end <= start or cut_start >= end:
                pieces.append((start, end))
                continue
            if start < cut_start:
                pieces.append((start, cut_start))
            if cut_end < end:
                pieces.append((cut_end, end))
        remaining = pieces
    return remaining


def expand_windows(
    rows: list[AvailabilityWindowRow],
    start_date: date,
    end_date: date,
    default_slot_minutes: int,
) -> list[AvailabilityWindow]:
    """Turn stored window rows into concrete per-date windows.

    Working windows with the same granularity are merged when they touch;
    blocked windows are cut out of whatever remains on their date.
    """
    windows: list[AvailabilityWindow] = []

    for day in iterate_dates(start_date, end_date):
        todays_rows = [row for row in rows if applies_on(row, day)]
        blocked = merge_intervals([
            (_to_minutes(row.start_time), _to_minutes(row.end_time))
            for row in todays_rows
            if row.is_blocked
        ])

        by_granularity: dict[int, list[tuple[int, int]]] = {}
        for row in todays_rows:
            if row.is_blocked:
                continue
            slot_minutes = row.slot_minutes or default_slot_minutes
            by_granularity.setdefault(slot_minutes, []).append(
                (_to_minutes(row.start_time), _to_minutes(row.end_time))
            )

        todays_windows = []
        for slot_minutes, intervals in by_granularity.items():
            for start, end in subtract_intervals(merge_intervals(intervals), blocked):
                if start < end:
                    todays_windows.append(AvailabilityWindow(day, _to_time(start), _to_time(end), slot_minutes))

        windows.extend(sorted(todays_windows, key=lambda window: (window.start, window.end)))

    return windows


def get_availability_windows(
    store: SchedulingStore,
    doctor_id: int,
    start_date: date,
    end_date: date,
) -> list[AvailabilityWindow]:
    if end_date < start_date:
        raise ValueError('The end of the date range must not be before its start.')

    doctor = store.get_doctor(doctor_id)
    if doctor is None:
        raise NotFoundError('Doctor not found.')

    rows = store.get_doctor_availability(doctor_id, start_date, end_date)
    return expand_windows(rows, start_date, end_date, doctor.slot_minutes or config.DEFAULT_SLOT_MINUTES)
