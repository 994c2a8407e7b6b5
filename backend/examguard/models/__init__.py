from .base import BaseModel
from .enums import UserRole, AttemptStatus, Severity, ViolationType
from .user import User
from .exam import Exam, ExamAttempt, SuspiciousFlag
from .incident import CheatingIncident

__all__ = [
    "BaseModel",
    "UserRole",
    "AttemptStatus",
    "Severity",
    "ViolationType",
    "User",
    "Exam",
    "ExamAttempt",
    "SuspiciousFlag",
    "CheatingIncident"
]
