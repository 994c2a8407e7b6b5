from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel, Discriminator, Field, RootModel, Tag, field_serializer, field_validator, model_validator
)
from pydantic.alias_generators import to_camel

from ..models.enums import AttemptStatus, Severity, ViolationType
from ..utils.timezone import format_local_time


class CamelModel(BaseModel):
    """Exam API payloads use camelCase on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class QuestionIn(CamelModel):
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_answer: int = Field(..., ge=0)
    marks: int = Field(..., gt=0)

    @model_validator(mode="after")
    def _correct_answer_in_range(self):
        if self.correct_answer >= len(self.options):
            raise ValueError("correctAnswer must point at one of the options")
        return self


class ExamPolicyFields(CamelModel):
    shuffle_questions: bool = True
    shuffle_options: bool = True
    proctoring_enabled: bool = True
    allow_tab_switch: bool = False
    max_tab_switches: int = Field(0, ge=0)
    webcam_required: bool = False
    full_screen_required: bool = True
    show_results: bool = False


class ExamCreate(ExamPolicyFields):
    title: str = Field(..., min_length=1)
    title_secondary: Optional[str] = None
    description: str = Field(..., min_length=1)
    description_secondary: Optional[str] = None
    questions: List[QuestionIn] = Field(..., min_length=1)
    total_marks: int = Field(..., gt=0)
    passing_marks: int = Field(..., gt=0)
    duration: int = Field(..., gt=0)
    max_attempts: int = Field(1, ge=1)
    start_date: datetime
    end_date: datetime


class ExamUpdate(CamelModel):
    title: Optional[str] = None
    title_secondary: Optional[str] = None
    description: Optional[str] = None
    description_secondary: Optional[str] = None
    questions: Optional[List[QuestionIn]] = None
    total_marks: Optional[int] = Field(None, gt=0)
    passing_marks: Optional[int] = Field(None, gt=0)
    duration: Optional[int] = Field(None, gt=0)
    max_attempts: Optional[int] = Field(None, ge=1)
    shuffle_questions: Optional[bool] = None
    shuffle_options: Optional[bool] = None
    proctoring_enabled: Optional[bool] = None
    allow_tab_switch: Optional[bool] = None
    max_tab_switches: Optional[int] = Field(None, ge=0)
    webcam_required: Optional[bool] = None
    full_screen_required: Optional[bool] = None
    show_results: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class ExamStudentView(ExamPolicyFields):
    """Exam metadata as a student sees it: never contains questions or keys."""
    id: int
    title: str
    title_secondary: Optional[str] = None
    description: str
    description_secondary: Optional[str] = None
    duration: int
    total_marks: int
    passing_marks: int
    max_attempts: int
    start_date: datetime
    end_date: datetime

    @field_serializer("start_date", "end_date")
    def _serialize_window(self, value: datetime):
        return value.isoformat()


class ExamOut(ExamStudentView):
    teacher_id: int
    questions: List[QuestionIn]
    is_active: bool
    created_at: Optional[datetime] = None


class PresentedQuestion(CamelModel):
    index: int
    question: str
    options: List[str]
    marks: int


class AttemptView(CamelModel):
    id: str
    status: AttemptStatus
    start_time: datetime
    deadline: datetime
    answers: Dict[int, int] = {}
    questions: List[PresentedQuestion]
    start_time_local: Optional[str] = None

    @field_serializer("start_time_local")
    def _serialize_start_time_local(self, value):
        return format_local_time(self.start_time)


class ExamPageResponse(CamelModel):
    exam: ExamStudentView
    attempt: Optional[AttemptView] = None
    questions: List[PresentedQuestion] = []
    is_new_attempt: bool


class StartAttemptRequest(CamelModel):
    user_agent: Optional[str] = Field(None, max_length=512)
    screen_resolution: Optional[str] = Field(None, max_length=32)


class StartAttemptResponse(CamelModel):
    attempt: AttemptView


class UserStats(CamelModel):
    attempt_count: int
    finished_attempts: int
    can_attempt: bool
    has_attempt_in_progress: bool
    best_score: Optional[float] = None
    has_passed: bool
    last_attempt_status: Optional[AttemptStatus] = None


class AvailableExam(CamelModel):
    exam: ExamStudentView
    user_stats: UserStats


# Violation reports: one variant per event type, each carrying only its own details.

class NoDetails(CamelModel):
    pass


class TabSwitchDetails(CamelModel):
    count: Optional[int] = Field(None, ge=0)


class FocusLossDetails(CamelModel):
    time_away: Optional[int] = Field(None, ge=0)


class KeyComboDetails(CamelModel):
    key: Optional[str] = Field(None, max_length=32)
    ctrl: bool = False
    shift: bool = False
    alt: bool = False


class CopyPasteDetails(CamelModel):
    key: Optional[str] = Field(None, max_length=32)


class DevToolsDetails(CamelModel):
    source: Optional[Literal["shortcut", "window_size"]] = None
    key: Optional[str] = Field(None, max_length=32)
    width_delta: Optional[int] = None
    height_delta: Optional[int] = None


class _ReportBase(CamelModel):
    event_id: Optional[str] = Field(None, max_length=64)
    timestamp: Optional[datetime] = None

    @field_validator("details", mode="before", check_fields=False)
    @classmethod
    def _none_details(cls, value):
        return {} if value is None else value

    def details_payload(self) -> Dict[str, Any]:
        details = self.details
        if isinstance(details, BaseModel):
            return details.model_dump(by_alias=True, exclude_none=True)
        return dict(details)


class TabSwitchReport(_ReportBase):
    event_type: Literal["TAB_SWITCH"]
    details: TabSwitchDetails = Field(default_factory=TabSwitchDetails)


class FocusLossReport(_ReportBase):
    event_type: Literal["WINDOW_FOCUS_LOSS"]
    details: FocusLossDetails = Field(default_factory=FocusLossDetails)


class FullscreenExitReport(_ReportBase):
    event_type: Literal["FULLSCREEN_EXIT"]
    details: NoDetails = Field(default_factory=NoDetails)


class MouseLeftReport(_ReportBase):
    event_type: Literal["MOUSE_LEFT_WINDOW"]
    details: NoDetails = Field(default_factory=NoDetails)


class RightClickReport(_ReportBase):
    event_type: Literal["RIGHT_CLICK"]
    details: NoDetails = Field(default_factory=NoDetails)


class CopyPasteReport(_ReportBase):
    event_type: Literal["COPY_PASTE"]
    details: CopyPasteDetails = Field(default_factory=CopyPasteDetails)


class SuspiciousKeyboardReport(_ReportBase):
    event_type: Literal["SUSPICIOUS_KEYBOARD"]
    details: KeyComboDetails = Field(default_factory=KeyComboDetails)


class DevToolsReport(_ReportBase):
    event_type: Literal["DEVELOPER_TOOLS"]
    details: DevToolsDetails = Field(default_factory=DevToolsDetails)


class OtherViolationReport(_ReportBase):
    """Event types this server does not know yet; scored with the default delta."""
    event_type: str = Field(..., min_length=1, max_length=64)
    details: Dict[str, Any] = Field(default_factory=dict)


_KNOWN_EVENT_TYPES = {kind.value for kind in ViolationType}


def _report_tag(value: Any) -> str:
    if isinstance(value, dict):
        event_type = value.get("eventType", value.get("event_type"))
    else:
        event_type = getattr(value, "event_type", None)
    return event_type if event_type in _KNOWN_EVENT_TYPES else "OTHER"


ViolationReport = Annotated[
    Union[
        Annotated[TabSwitchReport, Tag("TAB_SWITCH")],
        Annotated[FocusLossReport, Tag("WINDOW_FOCUS_LOSS")],
        Annotated[FullscreenExitReport, Tag("FULLSCREEN_EXIT")],
        Annotated[MouseLeftReport, Tag("MOUSE_LEFT_WINDOW")],
        Annotated[RightClickReport, Tag("RIGHT_CLICK")],
        Annotated[CopyPasteReport, Tag("COPY_PASTE")],
        Annotated[SuspiciousKeyboardReport, Tag("SUSPICIOUS_KEYBOARD")],
        Annotated[DevToolsReport, Tag("DEVELOPER_TOOLS")],
        Annotated[OtherViolationReport, Tag("OTHER")],
    ],
    Discriminator(_report_tag),
]


class ViolationReportRequest(RootModel[ViolationReport]):
    pass


class ViolationResponse(CamelModel):
    terminated: bool
    risk_score: Optional[int] = None
    warning: Optional[str] = None
    message: Optional[str] = None
    duplicate: bool = False


class SaveAnswersRequest(CamelModel):
    answers: Dict[int, int] = {}


class SaveAnswersResponse(CamelModel):
    attempt_id: str
    answered: int


class SubmitAttemptRequest(CamelModel):
    answers: Dict[int, int] = {}
    time_spent: int = Field(..., ge=0)


class QuestionReview(CamelModel):
    index: int
    question: str
    your_answer: Optional[int] = None
    correct_answer: int
    is_correct: bool


class SubmittedAttempt(CamelModel):
    id: str
    status: AttemptStatus
    time_spent: int
    submitted_at: datetime
    score: Optional[float] = None
    max_score: Optional[int] = None
    percentage: Optional[float] = None
    passed: Optional[bool] = None


class SubmitAttemptResponse(CamelModel):
    attempt: SubmittedAttempt
    message: Optional[str] = None
    warning: Optional[str] = None
    review: Optional[List[QuestionReview]] = None


class IncidentOut(CamelModel):
    id: int
    incident_type: str
    description: Optional[str] = None
    severity: Severity
    evidence: Optional[Dict[str, Any]] = None
    timestamp: datetime


class StudentBrief(CamelModel):
    id: int
    full_name: Optional[str] = None
    email: str


class AttemptResult(CamelModel):
    id: str
    student: StudentBrief
    status: AttemptStatus
    score: float = 0
    percentage: float = 0
    time_spent: int = 0
    risk_score: int = 0
    tab_switches: int = 0
    submitted_at: datetime
    cheating_incidents: List[IncidentOut] = []


class ExamStats(CamelModel):
    total_attempts: int
    unique_students: int
    completed_attempts: int
    flagged_attempts: int
    average_score: float
    pass_rate: float
    cheating_incidents: int


class ExamWithStats(CamelModel):
    exam: ExamOut
    stats: ExamStats


class ExamResults(CamelModel):
    exam: ExamOut
    attempts: List[AttemptResult]
