"""Activity log model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from backend.database import Base


class ActivityLog(Base):
    """Append-only audit trail of scheduling actions."""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(Integer, nullable=False)
    details = Column(JSON)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
