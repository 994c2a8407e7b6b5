"""
Risk scoring policy for proctored exam attempts.

Pure functions only: nothing here touches the database. The attempt service
turns a :class:`ViolationAssessment` into one atomic UPDATE and feeds the
value returned by that write back into :func:`evaluate_risk`.
"""
from dataclasses import dataclass
from typing import Optional

from ..models.enums import ViolationType, Severity

BASE_DELTAS = {
    ViolationType.TAB_SWITCH: 10,
    ViolationType.MOUSE_LEFT_WINDOW: 5,
    ViolationType.FULLSCREEN_EXIT: 15,
    ViolationType.RIGHT_CLICK: 3,
    ViolationType.COPY_PASTE: 20,
    ViolationType.SUSPICIOUS_KEYBOARD: 15,
    ViolationType.DEVELOPER_TOOLS: 50,
}
DEFAULT_DELTA = 5

TAB_SWITCH_FORBIDDEN_DELTA = 25
TAB_SWITCH_OVER_LIMIT_DELTA = 30
FULLSCREEN_REQUIRED_DELTA = 25

ALWAYS_INCIDENT = frozenset({ViolationType.COPY_PASTE, ViolationType.DEVELOPER_TOOLS})

INCIDENT_THRESHOLD = 60
CRITICAL_THRESHOLD = 80
TERMINATION_THRESHOLD = 90
WARNING_DELTA = 15

FLAG_THRESHOLD = 70
FLAG_CRITICAL_THRESHOLD = 85
FAST_COMPLETION_RATIO = 0.2
FAST_COMPLETION_PENALTY = 25

# Attempt column incremented alongside the risk score, per violation type
COUNTER_COLUMNS = {
    ViolationType.TAB_SWITCH: "tab_switches",
    ViolationType.MOUSE_LEFT_WINDOW: "mouse_left_count",
    ViolationType.FULLSCREEN_EXIT: "full_screen_exits",
    ViolationType.RIGHT_CLICK: "right_clicks",
    ViolationType.COPY_PASTE: "copy_paste_events",
}


@dataclass(frozen=True)
class ExamPolicy:
    allow_tab_switch: bool = False
    max_tab_switches: int = 0
    full_screen_required: bool = True

    @classmethod
    def from_exam(cls, exam) -> "ExamPolicy":
        return cls(
            allow_tab_switch=bool(exam.allow_tab_switch),
            max_tab_switches=exam.max_tab_switches or 0,
            full_screen_required=bool(exam.full_screen_required),
        )


@dataclass(frozen=True)
class ViolationAssessment:
    """Risk delta for one report.

    When ``escalate_at_count`` is set the delta depends on the tab-switch count
    *before* this report: ``escalated_delta`` once that count has reached the
    limit, ``delta`` otherwise.
    """
    event_type: str
    delta: int
    counter: Optional[str] = None
    force_incident: bool = False
    escalate_at_count: Optional[int] = None
    escalated_delta: Optional[int] = None

    def applied_delta(self, count_before: int = 0) -> int:
        if self.escalate_at_count is not None and count_before >= self.escalate_at_count:
            return self.escalated_delta
        return self.delta


@dataclass(frozen=True)
class RiskDecision:
    risk_score: int
    record_incident: bool
    severity: Optional[Severity]
    terminate: bool
    warning: Optional[str]


def parse_violation_type(event_type: str) -> Optional[ViolationType]:
    try:
        return ViolationType(event_type)
    except ValueError:
        return None


def assess_violation(event_type: str, policy: ExamPolicy) -> ViolationAssessment:
    kind = parse_violation_type(event_type)
    if kind is None:
        return ViolationAssessment(event_type=event_type, delta=DEFAULT_DELTA)

    delta = BASE_DELTAS.get(kind, DEFAULT_DELTA)
    counter = COUNTER_COLUMNS.get(kind)
    force = kind in ALWAYS_INCIDENT

    if kind is ViolationType.TAB_SWITCH:
        if not policy.allow_tab_switch:
            return ViolationAssessment(kind.value, TAB_SWITCH_FORBIDDEN_DELTA, counter, force)
        return ViolationAssessment(
            kind.value, delta, counter, force,
            escalate_at_count=policy.max_tab_switches,
            escalated_delta=TAB_SWITCH_OVER_LIMIT_DELTA,
        )

    if kind is ViolationType.FULLSCREEN_EXIT and policy.full_screen_required:
        delta = FULLSCREEN_REQUIRED_DELTA

    return ViolationAssessment(kind.value, delta, counter, force)


def incident_severity(risk_score: int) -> Severity:
    return Severity.CRITICAL if risk_score > CRITICAL_THRESHOLD else Severity.HIGH


def evaluate_risk(new_risk_score: int, applied_delta: int, force_incident: bool) -> RiskDecision:
    """Decide what follows from a report, given the post-increment risk score."""
    record = force_incident or new_risk_score > INCIDENT_THRESHOLD
    return RiskDecision(
        risk_score=new_risk_score,
        record_incident=record,
        severity=incident_severity(new_risk_score) if record else None,
        terminate=new_risk_score > TERMINATION_THRESHOLD,
        warning="Suspicious activity detected" if applied_delta > WARNING_DELTA else None,
    )


@dataclass(frozen=True)
class SubmissionRisk:
    penalty: int
    fast_completion: bool
    expected_min_time: float


def assess_submission_timing(time_spent: int, duration_minutes: int) -> SubmissionRisk:
    expected_min_time = duration_minutes * 60 * FAST_COMPLETION_RATIO
    fast = time_spent < expected_min_time
    return SubmissionRisk(
        penalty=FAST_COMPLETION_PENALTY if fast else 0,
        fast_completion=fast,
        expected_min_time=expected_min_time,
    )


def flag_severity(final_risk_score: int) -> Severity:
    return Severity.CRITICAL if final_risk_score > FLAG_CRITICAL_THRESHOLD else Severity.HIGH

