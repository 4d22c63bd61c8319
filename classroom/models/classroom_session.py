"""Classroom session model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from classroom.database import Base

SESSION_STATUS_SCHEDULED = "scheduled"


class ClassroomSession(Base):
    """Represents a one-on-one session between an instructor and a student."""
    __tablename__ = "classroom_sessions"

    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    instructor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=SESSION_STATUS_SCHEDULED)
    created_at = Column(DateTime, default=datetime.utcnow)

    instructor = relationship("User", foreign_keys=[instructor_id])
    student = relationship("User", foreign_keys=[student_id])
