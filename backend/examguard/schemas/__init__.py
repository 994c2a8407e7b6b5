from .auth import Token
from .user import User, UserCreate, UserUpdate
from .exam import (
    ExamCreate, ExamUpdate, ExamOut, ExamStudentView, ExamPageResponse, StartAttemptRequest,
    StartAttemptResponse, AvailableExam, ViolationReportRequest, ViolationResponse,
    SaveAnswersRequest, SaveAnswersResponse, SubmitAttemptRequest, SubmitAttemptResponse,
    IncidentOut, ExamWithStats, ExamResults
)
__all__ = [
    "Token",
    "User",
    "UserCreate",
    "UserUpdate",
    "ExamCreate",
    "ExamUpdate",
    "ExamOut",
    "ExamStudentView",
    "ExamPageResponse",
    "StartAttemptRequest",
    "StartAttemptResponse",
    "AvailableExam",
    "ViolationReportRequest",
    "ViolationResponse",
    "SaveAnswersRequest",
    "SaveAnswersResponse",
    "SubmitAttemptRequest",
    "SubmitAttemptResponse",
    "IncidentOut",
    "ExamWithStats",
    "ExamResults",
]
