import pytest

from examguard.models.enums import Severity
from examguard.services.risk_scoring import (
    DEFAULT_DELTA, ExamPolicy, assess_submission_timing, assess_violation,
    evaluate_risk, flag_severity, incident_severity
)


@pytest.mark.parametrize("event_type, delta", [
    ("TAB_SWITCH", 10),
    ("MOUSE_LEFT_WINDOW", 5),
    ("FULLSCREEN_EXIT", 15),
    ("RIGHT_CLICK", 3),
    ("COPY_PASTE", 20),
    ("SUSPICIOUS_KEYBOARD", 15),
    ("DEVELOPER_TOOLS", 50),
    ("WINDOW_FOCUS_LOSS", DEFAULT_DELTA),
    ("SCREENSHOT_ATTEMPT", DEFAULT_DELTA),
])
def test_base_deltas_with_permissive_policy(event_type, delta):
    policy = ExamPolicy(allow_tab_switch=True, max_tab_switches=100, full_screen_required=False)
    assert assess_violation(event_type, policy).applied_delta(0) == delta


def test_unknown_event_type_is_never_free():
    assessment = assess_violation("SOMETHING_NEW", ExamPolicy())
    assert assessment.delta == 5
    assert assessment.counter is None
    assert not assessment.force_incident


def test_tab_switch_forbidden_costs_25():
    assessment = assess_violation("TAB_SWITCH", ExamPolicy(allow_tab_switch=False, max_tab_switches=0))
    assert assessment.applied_delta(0) == 25
    assert assessment.applied_delta(7) == 25
    assert assessment.counter == "tab_switches"


def test_tab_switch_escalates_once_limit_reached():
    assessment = assess_violation("TAB_SWITCH", ExamPolicy(allow_tab_switch=True, max_tab_switches=2))
    assert [assessment.applied_delta(n) for n in range(4)] == [10, 10, 30, 30]


def test_fullscreen_exit_escalates_only_when_required():
    assert assess_violation("FULLSCREEN_EXIT", ExamPolicy(full_screen_required=True)).delta == 25
    assert assess_violation("FULLSCREEN_EXIT", ExamPolicy(full_screen_required=False)).delta == 15


@pytest.mark.parametrize("event_type", ["COPY_PASTE", "DEVELOPER_TOOLS"])
def test_some_types_always_record_an_incident(event_type):
    assessment = assess_violation(event_type, ExamPolicy())
    decision = evaluate_risk(assessment.delta, assessment.delta, assessment.force_incident)
    assert decision.record_incident
    assert decision.severity == Severity.HIGH


def test_incident_only_above_sixty_for_other_types():
    assert not evaluate_risk(60, 10, False).record_incident
    decision = evaluate_risk(61, 10, False)
    assert decision.record_incident
    assert decision.severity == Severity.HIGH
    assert evaluate_risk(81, 10, False).severity == Severity.CRITICAL


def test_termination_strictly_above_ninety():
    assert not evaluate_risk(90, 5, False).terminate
    assert evaluate_risk(91, 5, False).terminate


def test_warning_when_delta_large():
    assert evaluate_risk(15, 15, False).warning is None
    assert evaluate_risk(25, 25, False).warning == "Suspicious activity detected"


def test_incident_severity_boundary():
    assert incident_severity(80) == Severity.HIGH
    assert incident_severity(81) == Severity.CRITICAL


def test_fast_completion_penalty():
    fast = assess_submission_timing(time_spent=180, duration_minutes=60)
    assert fast.fast_completion
    assert fast.penalty == 25
    assert fast.expected_min_time == 720

    normal = assess_submission_timing(time_spent=720, duration_minutes=60)
    assert not normal.fast_completion
    assert normal.penalty == 0


def test_flag_severity():
    assert flag_severity(71) == Severity.HIGH
    assert flag_severity(85) == Severity.HIGH
    assert flag_severity(86) == Severity.CRITICAL

