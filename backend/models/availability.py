"""Availability model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, Date, ForeignKey, Integer, Time
from backend.database import Base


class AvailabilityWindow(Base):
    """A doctor-declared interval of bookable (or blocked) time.

    Recurring windows set ``day_of_week`` (0 is Monday); one-off windows set
    ``window_date``. Blocked windows carve time off whatever working windows
    apply to the same date.
    """
    __tablename__ = "availability_windows"
    __table_args__ = (
        CheckConstraint(
            "(day_of_week IS NULL) <> (window_date IS NULL)",
            name="ck_availability_windows_day_or_date",
        ),
        CheckConstraint("start_time < end_time", name="ck_availability_windows_order"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=True)
    window_date = Column(Date, nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_minutes = Column(Integer, nullable=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
