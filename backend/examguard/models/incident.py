from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.orm import relationship

from ..core.database import Base
from .enums import Severity
from ..utils.timezone import utc_now


class CheatingIncident(Base):
    __tablename__ = "cheating_incidents"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    exam_attempt_id = Column(String, ForeignKey("exam_attempts.id"), nullable=False, index=True)
    incident_type = Column(String, nullable=False)
    description = Column(Text)
    severity = Column(Enum(Severity, native_enum=False, length=20), default=Severity.MEDIUM, nullable=False)
    evidence = Column(JSON)
    timestamp = Column(DateTime, default=utc_now)

    attempt = relationship("ExamAttempt", back_populates="incidents")
    student = relationship("User")

    def __repr__(self):
        return f"<CheatingIncident {self.incident_type} for attempt {self.exam_attempt_id}>"
