from sqlalchemy import Column, String, Boolean, Enum
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import UserRole


class User(BaseModel):
    __tablename__ = "users"

    full_name = Column(String, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(Enum(UserRole, native_enum=False, length=20), default=UserRole.STUDENT, nullable=False)
    is_superuser = Column(Boolean(), default=False)

    exams = relationship("Exam", back_populates="teacher")
    exam_attempts = relationship("ExamAttempt", back_populates="student")
