import uuid

from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Float, Text, Boolean, Integer, JSON, Enum,
    Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship

from ..core.database import Base
from .base import BaseModel
from .enums import AttemptStatus
from ..utils.timezone import utc_now


class Exam(BaseModel):
    __tablename__ = "exams"

    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String, nullable=False)
    title_secondary = Column(String, nullable=True)
    description = Column(Text, nullable=False)
    description_secondary = Column(Text, nullable=True)
    # [{"question": str, "options": [str], "correctAnswer": int, "marks": int}]
    questions = Column(JSON, nullable=False)
    total_marks = Column(Integer, nullable=False)
    passing_marks = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False)
    max_attempts = Column(Integer, default=1, nullable=False)

    shuffle_questions = Column(Boolean, default=True)
    shuffle_options = Column(Boolean, default=True)
    proctoring_enabled = Column(Boolean, default=True)
    allow_tab_switch = Column(Boolean, default=False)
    max_tab_switches = Column(Integer, default=0)
    webcam_required = Column(Boolean, default=False)
    full_screen_required = Column(Boolean, default=True)
    show_results = Column(Boolean, default=False)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True)

    teacher = relationship("User", back_populates="exams")
    attempts = relationship("ExamAttempt", back_populates="exam", order_by="ExamAttempt.start_time.desc()")

    def is_open(self, now) -> bool:
        return bool(self.is_active) and self.start_date <= now <= self.end_date


class ExamAttempt(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (
        # At most one running attempt per (student, exam)
        Index(
            "uq_exam_attempts_in_progress",
            "exam_id", "student_id",
            unique=True,
            postgresql_where=text("status = 'IN_PROGRESS'"),
            sqlite_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(AttemptStatus, native_enum=False, length=20), default=AttemptStatus.IN_PROGRESS, nullable=False)

    # Canonical answers: original question index -> original option index
    answers = Column(JSON, default=dict)
    score = Column(Float, nullable=True)
    percentage = Column(Float, nullable=True)
    time_spent = Column(Integer, default=0)

    risk_score = Column(Integer, default=0, nullable=False)
    tab_switches = Column(Integer, default=0, nullable=False)
    mouse_left_count = Column(Integer, default=0, nullable=False)
    full_screen_exits = Column(Integer, default=0, nullable=False)
    right_clicks = Column(Integer, default=0, nullable=False)
    copy_paste_events = Column(Integer, default=0, nullable=False)

    # Presentation persisted at start: question_order[i] is the original index of the
    # i-th presented question, option_orders[i][j] the original index of its j-th option
    question_order = Column(JSON, nullable=False)
    option_orders = Column(JSON, nullable=False)

    start_time = Column(DateTime, default=utc_now)
    end_time = Column(DateTime, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    screen_resolution = Column(String, nullable=True)
    is_reviewed = Column(Boolean, default=False)

    exam = relationship("Exam", back_populates="attempts")
    student = relationship("User", back_populates="exam_attempts")
    suspicious_flags = relationship("SuspiciousFlag", back_populates="attempt", order_by="SuspiciousFlag.id")
    incidents = relationship("CheatingIncident", back_populates="attempt", order_by="CheatingIncident.id")

    def __repr__(self):
        return f"<ExamAttempt {self.id} exam={self.exam_id} status={self.status}>"


class SuspiciousFlag(Base):
    """One accepted violation report; rows are only ever inserted."""
    __tablename__ = "suspicious_flags"
    __table_args__ = (
        UniqueConstraint("attempt_id", "event_id", name="uq_suspicious_flags_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(String, ForeignKey("exam_attempts.id"), nullable=False, index=True)
    event_id = Column(String, nullable=True)
    event_type = Column(String, nullable=False)
    client_timestamp = Column(DateTime, nullable=True)
    recorded_at = Column(DateTime, default=utc_now)
    details = Column(JSON, default=dict)
    risk_delta = Column(Integer, default=0)

    attempt = relationship("ExamAttempt", back_populates="suspicious_flags")

    def as_log_entry(self) -> dict:
        return {
            "type": self.event_type,
            "timestamp": (self.client_timestamp or self.recorded_at).isoformat(),
            "details": self.details or {},
        }
