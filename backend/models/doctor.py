"""Doctor model definitions."""

from sqlalchemy import JSON, Boolean, Column, Float, ForeignKey, Integer, Numeric, String
from backend.database import Base


class Doctor(Base):
    """Represents a practitioner patients can book."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, unique=True)
    display_name = Column(String, nullable=False)
    specialties = Column(JSON, nullable=False, default=list)
    is_virtual = Column(Boolean, nullable=False, default=False)
    consultation_fee = Column(Numeric(10, 2))
    slot_minutes = Column(Integer)
    location = Column(String)
    hospital = Column(String)
    rating = Column(Float)
    reviews_count = Column(Integer, default=0)
    is_featured = Column(Boolean, default=False)
    is_accepting_patients = Column(Boolean, default=True)

    def offers_specialty(self, specialty: str) -> bool:
        wanted = (specialty or "").strip().lower()
        return any(wanted == (offered or "").strip().lower() for offered in (self.specialties or []))
