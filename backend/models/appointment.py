"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, text
from backend.database import Base


class Appointment(Base):
    """Represents a booked appointment.

    Rows are never deleted; cancellation is a status change so history is kept.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_doctor_slot",
            "doctor_id",
            "appointment_date",
            "start_time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    doctor_name = Column(String)
    specialty = Column(String)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    visit_type = Column(String)
    modality = Column(String, nullable=False, default="in-person")
    notes = Column(String)
    status = Column(String, nullable=False, default="scheduled")
    rescheduled_from_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.start_time)
