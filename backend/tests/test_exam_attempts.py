from datetime import timedelta

import pytest

from examguard.core.database import SessionLocal
from examguard.models import AttemptStatus, CheatingIncident, Exam, ExamAttempt, SuspiciousFlag, UserRole
from examguard.schemas.exam import TabSwitchReport
from examguard.services.attempt_service import AttemptService
from examguard.services.exceptions import AttemptNotInProgress
from examguard.utils.timezone import utc_now

from conftest import (
    auth_headers, backdate_attempt, correct_presented_answers, make_user, report, start_attempt
)


def get_attempt(db, attempt_id: str) -> ExamAttempt:
    db.expire_all()
    return db.query(ExamAttempt).filter(ExamAttempt.id == attempt_id).one()


def incidents_for(db, attempt_id: str):
    db.expire_all()
    return db.query(CheatingIncident).filter(CheatingIncident.exam_attempt_id == attempt_id).order_by(
        CheatingIncident.id
    ).all()


class TestStartAndResume:
    def test_exam_page_strips_answer_keys(self, client, exam, student_headers):
        response = client.get(f"/api/v1/exams/{exam.id}", headers=student_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["isNewAttempt"] is True
        assert data["attempt"] is None
        assert len(data["questions"]) == 3
        assert "questions" not in data["exam"]
        assert all("correctAnswer" not in q for q in data["questions"])

    def test_start_persists_materialization_and_fingerprint(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, {**student_headers, "X-Forwarded-For": "10.0.0.7, 10.0.0.1"})
        assert attempt["status"] == "IN_PROGRESS"
        assert attempt["answers"] == {}

        stored = get_attempt(db, attempt["id"])
        assert sorted(stored.question_order) == [0, 1, 2]
        assert stored.ip_address == "10.0.0.7"
        assert stored.screen_resolution == "1920x1080"
        assert stored.start_time is not None

    def test_resume_serves_the_persisted_order_verbatim(self, client, exam, student_headers):
        started = start_attempt(client, exam.id, student_headers)

        for _ in range(3):
            page = client.get(f"/api/v1/exams/{exam.id}", headers=student_headers).json()
            assert page["isNewAttempt"] is False
            assert page["attempt"]["id"] == started["id"]
            assert page["questions"] == started["questions"]

    def test_second_start_while_in_progress_conflicts(self, client, exam, student_headers):
        started = start_attempt(client, exam.id, student_headers)
        response = client.post(f"/api/v1/exams/{exam.id}", headers=student_headers)
        assert response.status_code == 409
        assert response.json()["attemptId"] == started["id"]

    def test_start_outside_window_rejected(self, client, make_exam, student_headers):
        exam = make_exam(start_date=utc_now() + timedelta(days=1), end_date=utc_now() + timedelta(days=2))
        response = client.post(f"/api/v1/exams/{exam.id}", headers=student_headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "Exam is not available at this time"

    def test_inactive_exam_rejected(self, client, make_exam, student_headers):
        exam = make_exam(is_active=False)
        assert client.post(f"/api/v1/exams/{exam.id}", headers=student_headers).status_code == 403

    def test_max_attempts_blocks_second_start(self, client, db, make_exam, student_headers):
        exam = make_exam(max_attempts=1)
        attempt = start_attempt(client, exam.id, student_headers)
        backdate_attempt(db, attempt["id"], minutes=30)
        submitted = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": correct_presented_answers(attempt["questions"]), "timeSpent": 1500},
            headers=student_headers
        )
        assert submitted.json()["attempt"]["status"] == "COMPLETED"

        response = client.post(f"/api/v1/exams/{exam.id}", headers=student_headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "Maximum attempts reached for this exam"
        assert client.get(f"/api/v1/exams/{exam.id}", headers=student_headers).status_code == 403

    def test_teachers_cannot_take_exams(self, client, exam, teacher_headers):
        assert client.post(f"/api/v1/exams/{exam.id}", headers=teacher_headers).status_code == 403

    def test_unknown_exam(self, client, student_headers):
        assert client.get("/api/v1/exams/999", headers=student_headers).status_code == 404

    def test_attempt_of_another_student_is_not_found(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        other = auth_headers(make_user(db, "other@example.com", UserRole.STUDENT))
        response = report(client, exam.id, attempt["id"], other, "RIGHT_CLICK")
        assert response.status_code == 404

    def test_available_exams_with_stats(self, client, exam, student_headers):
        start_attempt(client, exam.id, student_headers)
        data = client.get("/api/v1/exams", headers=student_headers).json()
        assert len(data) == 1
        assert data[0]["exam"]["id"] == exam.id
        stats = data[0]["userStats"]
        assert stats["attemptCount"] == 1
        assert stats["hasAttemptInProgress"] is True
        assert stats["canAttempt"] is True
        assert stats["lastAttemptStatus"] == "IN_PROGRESS"


class TestViolationReports:
    def test_two_devtools_events_terminate_exactly_once(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)

        first = report(client, exam.id, attempt["id"], student_headers, "DEVELOPER_TOOLS").json()
        assert first == {
            "terminated": False, "riskScore": 50, "warning": "Suspicious activity detected", "duplicate": False
        }

        second = report(client, exam.id, attempt["id"], student_headers, "DEVELOPER_TOOLS").json()
        assert second["terminated"] is True
        assert second["riskScore"] == 100
        assert second["message"] == "Exam terminated due to suspicious activity"

        stored = get_attempt(db, attempt["id"])
        assert stored.status == AttemptStatus.FAILED
        assert stored.end_time is not None

        for _ in range(3):
            rejected = report(client, exam.id, attempt["id"], student_headers, "DEVELOPER_TOOLS")
            assert rejected.status_code == 409
            assert rejected.json()["terminated"] is True

        stored = get_attempt(db, attempt["id"])
        assert stored.risk_score == 100
        assert db.query(SuspiciousFlag).filter(SuspiciousFlag.attempt_id == attempt["id"]).count() == 2
        severities = [i.severity.value for i in incidents_for(db, attempt["id"])]
        assert severities == ["HIGH", "CRITICAL"]

    def test_forbidden_tab_switch_applies_25_and_incident_above_60(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)

        scores = [
            report(client, exam.id, attempt["id"], student_headers, "TAB_SWITCH", details={"count": n}).json()
            for n in (1, 2, 3)
        ]
        assert [s["riskScore"] for s in scores] == [25, 50, 75]
        assert all(s["warning"] == "Suspicious activity detected" for s in scores)

        incidents = incidents_for(db, attempt["id"])
        assert len(incidents) == 1
        assert incidents[0].incident_type == "TAB_SWITCH"
        assert incidents[0].severity.value == "HIGH"
        assert incidents[0].evidence["riskScore"] == 75
        assert get_attempt(db, attempt["id"]).tab_switches == 3

    def test_tab_switch_escalates_after_allowed_count(self, client, db, make_exam, student_headers):
        exam = make_exam(allow_tab_switch=True, max_tab_switches=2)
        attempt = start_attempt(client, exam.id, student_headers)

        responses = [report(client, exam.id, attempt["id"], student_headers, "TAB_SWITCH").json() for _ in range(3)]
        assert [r["riskScore"] for r in responses] == [10, 20, 50]
        assert "warning" not in responses[0]
        assert responses[2]["warning"] == "Suspicious activity detected"

        deltas = [f.risk_delta for f in get_attempt(db, attempt["id"]).suspicious_flags]
        assert deltas == [10, 10, 30]

    def test_risk_equals_sum_of_applied_deltas(self, client, db, make_exam, student_headers):
        exam = make_exam(full_screen_required=False, allow_tab_switch=True, max_tab_switches=5)
        attempt = start_attempt(client, exam.id, student_headers)

        events = ["RIGHT_CLICK", "MOUSE_LEFT_WINDOW", "WINDOW_FOCUS_LOSS", "FULLSCREEN_EXIT",
                  "TAB_SWITCH", "SCREENSHOT_ATTEMPT", "RIGHT_CLICK"]
        previous = 0
        for event_type in events:
            score = report(client, exam.id, attempt["id"], student_headers, event_type).json()["riskScore"]
            assert score >= previous
            previous = score

        stored = get_attempt(db, attempt["id"])
        assert stored.risk_score == 3 + 5 + 5 + 15 + 10 + 5 + 3
        assert stored.risk_score == sum(f.risk_delta for f in stored.suspicious_flags)
        assert stored.right_clicks == 2
        assert stored.mouse_left_count == 1
        assert stored.full_screen_exits == 1

    def test_required_fullscreen_exit_costs_25(self, client, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        data = report(client, exam.id, attempt["id"], student_headers, "FULLSCREEN_EXIT").json()
        assert data["riskScore"] == 25

    def test_copy_paste_always_records_incident(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        data = report(client, exam.id, attempt["id"], student_headers, "COPY_PASTE", details={"key": "c"}).json()
        assert data["riskScore"] == 20

        incidents = incidents_for(db, attempt["id"])
        assert len(incidents) == 1
        assert incidents[0].evidence["key"] == "c"
        assert get_attempt(db, attempt["id"]).copy_paste_events == 1

    def test_duplicate_event_id_is_applied_once(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)

        first = report(client, exam.id, attempt["id"], student_headers, "RIGHT_CLICK", eventId="evt-1").json()
        again = report(client, exam.id, attempt["id"], student_headers, "RIGHT_CLICK", eventId="evt-1").json()
        assert first["riskScore"] == 3
        assert again["riskScore"] == 3
        assert again["duplicate"] is True

        stored = get_attempt(db, attempt["id"])
        assert stored.risk_score == 3
        assert len(stored.suspicious_flags) == 1

    def test_unknown_event_type_uses_default_delta(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        data = report(
            client, exam.id, attempt["id"], student_headers, "SCREEN_RECORDER", details={"tool": "obs"}
        ).json()
        assert data["riskScore"] == 5
        assert get_attempt(db, attempt["id"]).suspicious_flags[0].details == {"tool": "obs"}

    def test_invalid_known_details_rejected(self, client, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        response = report(
            client, exam.id, attempt["id"], student_headers, "WINDOW_FOCUS_LOSS", details={"timeAway": -4}
        )
        assert response.status_code == 422

    def test_reports_from_stale_snapshots_are_not_lost(self, client, db, make_exam, student_headers):
        exam = make_exam(allow_tab_switch=True, max_tab_switches=1)
        attempt = start_attempt(client, exam.id, student_headers)

        first, second = SessionLocal(), SessionLocal()
        try:
            loaded = [s.query(ExamAttempt).filter(ExamAttempt.id == attempt["id"]).one() for s in (first, second)]
            assert [(a.risk_score, a.tab_switches) for a in loaded] == [(0, 0), (0, 0)]

            results = [
                AttemptService(s).report_violation(a, s.get(Exam, exam.id), TabSwitchReport(event_type="TAB_SWITCH"))
                for s, a in zip((first, second), loaded)
            ]
        finally:
            first.close()
            second.close()

        assert [r["risk_score"] for r in results] == [10, 40]
        stored = get_attempt(db, attempt["id"])
        assert (stored.risk_score, stored.tab_switches) == (40, 2)
        assert [f.risk_delta for f in stored.suspicious_flags] == [10, 30]

    def test_closed_elsewhere_reports_the_real_status(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        snapshot_db = SessionLocal()
        try:
            snapshot = snapshot_db.query(ExamAttempt).filter(ExamAttempt.id == attempt["id"]).one()
            backdate_attempt(db, attempt["id"], minutes=30)
            client.put(
                f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
                json={"answers": {}, "timeSpent": 1500},
                headers=student_headers
            )

            with pytest.raises(AttemptNotInProgress) as excinfo:
                AttemptService(snapshot_db).report_violation(
                    snapshot, snapshot_db.get(Exam, exam.id), TabSwitchReport(event_type="TAB_SWITCH")
                )
        finally:
            snapshot_db.close()

        assert excinfo.value.context == {"status": "COMPLETED", "terminated": False}
        assert get_attempt(db, attempt["id"]).suspicious_flags == []

    def test_terminated_elsewhere_reports_termination(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        snapshot_db = SessionLocal()
        try:
            snapshot = snapshot_db.query(ExamAttempt).filter(ExamAttempt.id == attempt["id"]).one()
            report(client, exam.id, attempt["id"], student_headers, "DEVELOPER_TOOLS")
            report(client, exam.id, attempt["id"], student_headers, "DEVELOPER_TOOLS")

            with pytest.raises(AttemptNotInProgress) as excinfo:
                AttemptService(snapshot_db).submit_attempt(snapshot, snapshot_db.get(Exam, exam.id), {}, 600)
        finally:
            snapshot_db.close()

        assert excinfo.value.context == {"status": "FAILED", "terminated": True}
        assert get_attempt(db, attempt["id"]).status == AttemptStatus.FAILED

    def test_report_after_submission_rejected_without_side_effects(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        backdate_attempt(db, attempt["id"], minutes=30)
        client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": {}, "timeSpent": 1500},
            headers=student_headers
        )
        before = get_attempt(db, attempt["id"])
        risk_before, status_before = before.risk_score, before.status

        response = report(client, exam.id, attempt["id"], student_headers, "TAB_SWITCH")
        assert response.status_code == 409
        assert response.json()["terminated"] is False

        after = get_attempt(db, attempt["id"])
        assert (after.risk_score, after.status) == (risk_before, status_before)
        assert after.suspicious_flags == []


class TestSubmission:
    def test_correct_round_trip_scores_full_marks(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        backdate_attempt(db, attempt["id"], minutes=30)

        response = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": correct_presented_answers(attempt["questions"]), "timeSpent": 1500},
            headers=student_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["attempt"]["status"] == "COMPLETED"
        assert data["attempt"]["score"] == 10
        assert data["attempt"]["maxScore"] == 10
        assert data["attempt"]["percentage"] == 100
        assert data["attempt"]["passed"] is True
        assert data.get("warning") is None
        assert all(item["isCorrect"] for item in data["review"])

        stored = get_attempt(db, attempt["id"])
        assert stored.status == AttemptStatus.COMPLETED
        assert stored.score == 10
        assert stored.time_spent == 1500

    def test_hidden_results_return_review_message(self, client, db, make_exam, student_headers):
        exam = make_exam(show_results=False)
        attempt = start_attempt(client, exam.id, student_headers)
        backdate_attempt(db, attempt["id"], minutes=30)

        data = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": {}, "timeSpent": 1500},
            headers=student_headers
        ).json()
        assert data["message"] == "Exam submitted successfully. Results will be available after review."
        assert data["attempt"]["score"] is None
        assert data["review"] is None
        assert get_attempt(db, attempt["id"]).score == 0

    def test_time_spent_capped_by_server_clock(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        backdate_attempt(db, attempt["id"], minutes=20)

        data = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": {}, "timeSpent": 3600},
            headers=student_headers
        ).json()
        assert 1200 <= data["attempt"]["timeSpent"] < 1300

    def test_fast_completion_adds_penalty(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)

        data = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": {}, "timeSpent": 180},
            headers=student_headers
        ).json()
        assert data["attempt"]["status"] == "COMPLETED"
        assert get_attempt(db, attempt["id"]).risk_score == 25

    def test_fast_completion_with_prior_risk_is_flagged(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        report(client, exam.id, attempt["id"], student_headers, "TAB_SWITCH")
        report(client, exam.id, attempt["id"], student_headers, "TAB_SWITCH")

        data = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": correct_presented_answers(attempt["questions"]), "timeSpent": 180},
            headers=student_headers
        ).json()
        assert data["attempt"]["status"] == "FLAGGED"
        assert data["attempt"]["score"] == 10
        assert data["warning"] == "Your exam has been flagged for review due to suspicious activity"

        stored = get_attempt(db, attempt["id"])
        assert stored.status == AttemptStatus.FLAGGED
        assert stored.risk_score == 75

        flagged = [i for i in incidents_for(db, attempt["id"]) if i.incident_type == "SUSPICIOUS_BEHAVIOR"]
        assert len(flagged) == 1
        assert flagged[0].severity.value == "HIGH"
        evidence = flagged[0].evidence
        assert evidence["finalRiskScore"] == 75
        assert evidence["fastCompletion"] is True
        assert evidence["tabSwitches"] == 2
        assert [entry["type"] for entry in evidence["suspiciousActivities"]] == ["TAB_SWITCH", "TAB_SWITCH"]

    def test_stale_submission_rejected_and_attempt_failed(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        backdate_attempt(db, attempt["id"], minutes=exam.duration + 10)

        response = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": {}, "timeSpent": 100},
            headers=student_headers
        )
        assert response.status_code == 409
        assert response.json()["detail"].startswith("Stale submission")

        assert get_attempt(db, attempt["id"]).status == AttemptStatus.FAILED
        incidents = incidents_for(db, attempt["id"])
        assert [i.incident_type for i in incidents] == ["TIME_LIMIT_EXCEEDED"]

    def test_submit_twice_rejected(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        backdate_attempt(db, attempt["id"], minutes=30)
        url = f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}"

        assert client.put(url, json={"answers": {}, "timeSpent": 1500}, headers=student_headers).status_code == 200
        assert client.put(url, json={"answers": {}, "timeSpent": 1500}, headers=student_headers).status_code == 409

    def test_invalid_answer_index_rejected(self, client, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        response = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": {"7": 0}, "timeSpent": 10},
            headers=student_headers
        )
        assert response.status_code == 400


class TestSaveAnswers:
    def test_saved_answers_survive_resume(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        url = f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}/answers"

        assert client.patch(url, json={"answers": {"0": 1}}, headers=student_headers).json()["answered"] == 1
        assert client.patch(url, json={"answers": {"2": 0}}, headers=student_headers).json()["answered"] == 2

        page = client.get(f"/api/v1/exams/{exam.id}", headers=student_headers).json()
        assert page["attempt"]["answers"] == {"0": 1, "2": 0}

        stored = get_attempt(db, attempt["id"])
        first_original = stored.question_order[0]
        assert stored.answers[str(first_original)] == stored.option_orders[0][1]

    def test_saved_answers_count_at_submission(self, client, db, exam, student_headers):
        attempt = start_attempt(client, exam.id, student_headers)
        backdate_attempt(db, attempt["id"], minutes=30)
        correct = correct_presented_answers(attempt["questions"])

        client.patch(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}/answers",
            json={"answers": correct},
            headers=student_headers
        )
        data = client.put(
            f"/api/v1/exams/{exam.id}/attempts/{attempt['id']}",
            json={"answers": {}, "timeSpent": 1500},
            headers=student_headers
        ).json()
        assert data["attempt"]["score"] == 10
