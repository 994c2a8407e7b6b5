"""
Exam attempt lifecycle: start, resume, save answers, violation reports,
submission and expiry.

This is the only code that writes ``ExamAttempt`` rows. Risk and counter
changes are single ``UPDATE ... RETURNING`` statements and every terminal
status write is guarded by ``status = 'IN_PROGRESS'``, so concurrent requests
for the same attempt never lose an increment or transition twice.
"""
import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.cache import cache
from ..core.config import settings
from ..models.enums import AttemptStatus, Severity, SUSPICIOUS_BEHAVIOR, TIME_LIMIT_EXCEEDED
from ..models.exam import Exam, ExamAttempt, SuspiciousFlag
from ..tasks.notifications import send_integrity_alert
from ..utils.timezone import to_naive_utc, utc_now
from .exam_service import FLAGGED_RISK_THRESHOLD, TERMINAL_STATUSES, teacher_stats_cache_key
from .exceptions import (
    AttemptAlreadyInProgress, AttemptLimitReached, AttemptNotInProgress, ExamNotAvailable,
    InvalidAnswers, StaleSubmission
)
from .grading import grade_exam
from .incident_service import IncidentService
from .materialization import (
    AnswerMappingError, Materialization, materialize, normalize_answer_keys, present_questions,
    present_review, to_canonical, to_presented
)
from .risk_scoring import (
    FLAG_THRESHOLD, ExamPolicy, assess_submission_timing, assess_violation, evaluate_risk, flag_severity
)

logger = logging.getLogger(__name__)

TERMINATION_MESSAGE = "Exam terminated due to suspicious activity"
FLAGGED_WARNING = "Your exam has been flagged for review due to suspicious activity"
REVIEW_MESSAGE = "Exam submitted successfully. Results will be available after review."


class AttemptService:
    def __init__(self, db: Session):
        self.db = db
        self.incidents = IncidentService(db)

    # Lookups

    def get_student_attempt(self, exam_id: int, attempt_id: str, student_id: int) -> Optional[ExamAttempt]:
        return self.db.query(ExamAttempt).filter(
            ExamAttempt.id == attempt_id,
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.student_id == student_id
        ).first()

    def get_in_progress_attempt(self, exam_id: int, student_id: int) -> Optional[ExamAttempt]:
        return self.db.query(ExamAttempt).filter(
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.student_id == student_id,
            ExamAttempt.status == AttemptStatus.IN_PROGRESS
        ).first()

    def count_finished_attempts(self, exam_id: int, student_id: int) -> int:
        return self.db.query(ExamAttempt).filter(
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.student_id == student_id,
            ExamAttempt.status.in_(TERMINAL_STATUSES)
        ).count()

    # Time limits

    @staticmethod
    def deadline(attempt: ExamAttempt, exam: Exam) -> datetime:
        return attempt.start_time + timedelta(minutes=exam.duration)

    def is_stale(self, attempt: ExamAttempt, exam: Exam, now: Optional[datetime] = None) -> bool:
        grace = timedelta(minutes=settings.attempt_grace_period_minutes)
        return (now or utc_now()) > self.deadline(attempt, exam) + grace

    def _elapsed_seconds(self, attempt: ExamAttempt, now: datetime) -> int:
        return max(0, int((now - attempt.start_time).total_seconds()))

    def _close_attempt(self, attempt_id: str, status: AttemptStatus, **values) -> bool:
        """Move an attempt to a terminal status. False if it already left IN_PROGRESS."""
        result = self.db.execute(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt_id, ExamAttempt.status == AttemptStatus.IN_PROGRESS)
            .values(status=status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _after_status_change(self, attempt: ExamAttempt, exam: Exam, status: AttemptStatus,
                             risk_score: int, reason: str) -> None:
        cache.delete(teacher_stats_cache_key(exam.teacher_id))
        if status not in (AttemptStatus.FLAGGED, AttemptStatus.FAILED):
            return
        try:
            send_integrity_alert.delay({
                "teacherId": exam.teacher_id,
                "examId": exam.id,
                "examTitle": exam.title,
                "attemptId": attempt.id,
                "studentId": attempt.student_id,
                "status": status.value,
                "riskScore": risk_score,
                "reason": reason,
            })
        except Exception as e:
            logger.error(f"Failed to queue integrity alert for attempt {attempt.id}: {e}")

    def expire_attempt(self, attempt: ExamAttempt, exam: Exam, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        deadline = self.deadline(attempt, exam)
        if not self._close_attempt(attempt.id, AttemptStatus.FAILED, end_time=now,
                                   time_spent=self._elapsed_seconds(attempt, now)):
            self.db.rollback()
            return False

        self.incidents.record(
            attempt,
            TIME_LIMIT_EXCEEDED,
            "Attempt exceeded its time limit without being submitted",
            Severity.MEDIUM,
            {
                "startTime": attempt.start_time.isoformat(),
                "deadline": deadline.isoformat(),
                "gracePeriodMinutes": settings.attempt_grace_period_minutes,
                "riskScore": attempt.risk_score,
            }
        )
        self.db.commit()
        logger.info(f"Attempt {attempt.id} expired (deadline {deadline.isoformat()})")
        self._after_status_change(attempt, exam, AttemptStatus.FAILED, attempt.risk_score, TIME_LIMIT_EXCEEDED)
        return True

    def expire_attempt_if_stale(self, attempt: ExamAttempt, exam: Exam, now: Optional[datetime] = None) -> bool:
        if attempt.status != AttemptStatus.IN_PROGRESS or not self.is_stale(attempt, exam, now):
            return False
        return self.expire_attempt(attempt, exam, now)

    def expire_stale_attempts(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        attempts = self.db.query(ExamAttempt).join(Exam).filter(
            ExamAttempt.status == AttemptStatus.IN_PROGRESS
        ).all()

        expired = 0
        for attempt in attempts:
            if self.expire_attempt_if_stale(attempt, attempt.exam, now):
                expired += 1
        return expired

    # Start / resume

    def attempt_view(self, attempt: ExamAttempt, exam: Exam) -> Dict[str, Any]:
        materialization = Materialization.from_attempt(attempt)
        return {
            "id": attempt.id,
            "status": attempt.status,
            "start_time": attempt.start_time,
            "deadline": self.deadline(attempt, exam),
            "answers": to_presented(materialization, normalize_answer_keys(attempt.answers)),
            "questions": present_questions(exam.questions, materialization),
        }

    def _resumable_attempt(self, exam: Exam, student_id: int, now: datetime) -> Optional[ExamAttempt]:
        attempt = self.get_in_progress_attempt(exam.id, student_id)
        if attempt is not None and self.expire_attempt_if_stale(attempt, exam, now):
            return None
        return attempt

    def _check_available(self, exam: Exam, now: datetime) -> None:
        if not exam.is_open(now):
            raise ExamNotAvailable("Exam is not available at this time")

    def _check_quota(self, exam: Exam, student_id: int) -> None:
        finished = self.count_finished_attempts(exam.id, student_id)
        if finished >= exam.max_attempts:
            raise AttemptLimitReached(
                "Maximum attempts reached for this exam",
                maxAttempts=exam.max_attempts,
                attemptsUsed=finished,
            )

    def get_exam_page(self, exam: Exam, student_id: int, rng: Optional[random.Random] = None) -> Dict[str, Any]:
        """Exam metadata plus either the running attempt or a preview of fresh questions.

        The preview is not stored; the order a student answers against is the
        one persisted by :meth:`start_attempt`.
        """
        now = utc_now()
        self._check_available(exam, now)

        attempt = self._resumable_attempt(exam, student_id, now)
        if attempt is not None:
            view = self.attempt_view(attempt, exam)
            return {"exam": exam, "attempt": view, "questions": view["questions"], "is_new_attempt": False}

        self._check_quota(exam, student_id)
        preview = materialize(exam.questions, exam.shuffle_questions, exam.shuffle_options, rng)
        return {
            "exam": exam,
            "attempt": None,
            "questions": present_questions(exam.questions, preview),
            "is_new_attempt": True,
        }

    def start_attempt(self, exam: Exam, student_id: int, ip_address: Optional[str] = None,
                      user_agent: Optional[str] = None, screen_resolution: Optional[str] = None,
                      rng: Optional[random.Random] = None) -> ExamAttempt:
        now = utc_now()
        self._check_available(exam, now)

        existing = self._resumable_attempt(exam, student_id, now)
        if existing is not None:
            raise AttemptAlreadyInProgress(
                "An attempt is already in progress. Resume it instead.",
                attemptId=existing.id,
            )
        self._check_quota(exam, student_id)

        materialization = materialize(exam.questions, exam.shuffle_questions, exam.shuffle_options, rng)
        attempt = ExamAttempt(
            exam_id=exam.id,
            student_id=student_id,
            status=AttemptStatus.IN_PROGRESS,
            answers={},
            question_order=materialization.question_order,
            option_orders=materialization.option_orders,
            start_time=now,
            ip_address=ip_address,
            user_agent=user_agent,
            screen_resolution=screen_resolution,
        )
        self.db.add(attempt)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise AttemptAlreadyInProgress("An attempt is already in progress. Resume it instead.")

        self.db.refresh(attempt)
        cache.delete(teacher_stats_cache_key(exam.teacher_id))
        logger.info(f"Student {student_id} started attempt {attempt.id} for exam {exam.id} from {ip_address}")
        return attempt

    # In-progress updates

    @staticmethod
    def _not_in_progress(status: AttemptStatus) -> AttemptNotInProgress:
        return AttemptNotInProgress(
            "Exam attempt is not in progress",
            status=status.value,
            terminated=status == AttemptStatus.FAILED,
        )

    def _ensure_in_progress(self, attempt: ExamAttempt) -> None:
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise self._not_in_progress(attempt.status)

    def _raise_not_in_progress(self, attempt_id: str) -> None:
        """A guarded write matched no row: another request already closed the attempt."""
        self.db.rollback()
        status = self.db.execute(
            select(ExamAttempt.status).where(ExamAttempt.id == attempt_id)
        ).scalar_one()
        raise self._not_in_progress(AttemptStatus(status))

    def _canonical_answers(self, attempt: ExamAttempt, answers: Dict[int, int]) -> Dict[int, int]:
        try:
            return to_canonical(Materialization.from_attempt(attempt), normalize_answer_keys(answers))
        except AnswerMappingError as e:
            raise InvalidAnswers(str(e))

    def save_answers(self, attempt: ExamAttempt, exam: Exam, answers: Dict[int, int]) -> int:
        """Merge partial answers (presented coordinates) into the attempt."""
        self._ensure_in_progress(attempt)
        if self.expire_attempt_if_stale(attempt, exam):
            raise StaleSubmission("Exam time limit has passed", attemptId=attempt.id)

        merged = normalize_answer_keys(attempt.answers)
        merged.update(self._canonical_answers(attempt, answers))
        stored = {str(k): v for k, v in merged.items()}

        result = self.db.execute(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt.id, ExamAttempt.status == AttemptStatus.IN_PROGRESS)
            .values(answers=stored)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._raise_not_in_progress(attempt.id)
        self.db.commit()
        return len(merged)

    def _duplicate_response(self, attempt_id: str) -> Dict[str, Any]:
        status, risk_score = self.db.execute(
            select(ExamAttempt.status, ExamAttempt.risk_score).where(ExamAttempt.id == attempt_id)
        ).one()
        terminated = status == AttemptStatus.FAILED
        return {
            "terminated": terminated,
            "risk_score": risk_score,
            "message": TERMINATION_MESSAGE if terminated else None,
            "duplicate": True,
        }

    def report_violation(self, attempt: ExamAttempt, exam: Exam, report) -> Dict[str, Any]:
        """Apply one client violation report and decide warning / incident / termination."""
        self._ensure_in_progress(attempt)
        attempt_id = attempt.id

        if report.event_id and self.db.query(SuspiciousFlag.id).filter(
            SuspiciousFlag.attempt_id == attempt_id,
            SuspiciousFlag.event_id == report.event_id
        ).first():
            return self._duplicate_response(attempt_id)

        details = report.details_payload()
        assessment = assess_violation(report.event_type, ExamPolicy.from_exam(exam))

        flag = SuspiciousFlag(
            attempt_id=attempt_id,
            event_id=report.event_id,
            event_type=report.event_type,
            client_timestamp=to_naive_utc(report.timestamp),
            details=details,
        )
        self.db.add(flag)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            return self._duplicate_response(attempt_id)

        if assessment.escalate_at_count is not None:
            # Evaluated against the pre-update count inside the same statement
            delta_expr = case(
                (ExamAttempt.tab_switches >= assessment.escalate_at_count, assessment.escalated_delta),
                else_=assessment.delta
            )
        else:
            delta_expr = assessment.delta

        values = {"risk_score": ExamAttempt.risk_score + delta_expr}
        if assessment.counter:
            values[assessment.counter] = getattr(ExamAttempt, assessment.counter) + 1

        row = self.db.execute(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt_id, ExamAttempt.status == AttemptStatus.IN_PROGRESS)
            .values(**values)
            .returning(ExamAttempt.risk_score, ExamAttempt.tab_switches)
            .execution_options(synchronize_session=False)
        ).first()
        if row is None:
            self._raise_not_in_progress(attempt_id)

        new_risk, tab_switches = row
        applied = assessment.applied_delta(tab_switches - 1)
        flag.risk_delta = applied
        decision = evaluate_risk(new_risk, applied, assessment.force_incident)

        if decision.record_incident:
            self.incidents.record(
                attempt,
                report.event_type,
                f"{report.event_type} detected during exam",
                decision.severity,
                {**details, "eventId": report.event_id, "riskDelta": applied, "riskScore": new_risk}
            )

        closed = False
        if decision.terminate:
            closed = self._close_attempt(attempt_id, AttemptStatus.FAILED, end_time=utc_now())
        self.db.commit()
        if decision.record_incident or new_risk - applied <= FLAGGED_RISK_THRESHOLD < new_risk:
            cache.delete(teacher_stats_cache_key(exam.teacher_id))

        logger.info(
            f"Violation {report.event_type} on attempt {attempt_id}: +{applied} -> {new_risk}"
            + (" (terminated)" if decision.terminate else "")
        )

        if decision.terminate:
            if closed:
                self._after_status_change(attempt, exam, AttemptStatus.FAILED, new_risk, report.event_type)
            return {"terminated": True, "risk_score": new_risk, "message": TERMINATION_MESSAGE}

        return {"terminated": False, "risk_score": new_risk, "warning": decision.warning}

    # Submission

    def submit_attempt(self, attempt: ExamAttempt, exam: Exam, answers: Dict[int, int],
                       time_spent: int) -> Dict[str, Any]:
        self._ensure_in_progress(attempt)
        now = utc_now()
        attempt_id = attempt.id

        if self.is_stale(attempt, exam, now):
            self.expire_attempt(attempt, exam, now)
            raise StaleSubmission(
                "Stale submission: the exam time limit has passed",
                attemptId=attempt_id,
                deadline=self.deadline(attempt, exam).isoformat(),
            )

        merged = normalize_answer_keys(attempt.answers)
        merged.update(self._canonical_answers(attempt, answers))

        time_spent = min(max(time_spent, 0), self._elapsed_seconds(attempt, now))
        grade = grade_exam(exam.questions, merged, exam.total_marks, exam.passing_marks)
        timing = assess_submission_timing(time_spent, exam.duration)

        final_risk_expr = ExamAttempt.risk_score + timing.penalty
        row = self.db.execute(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt_id, ExamAttempt.status == AttemptStatus.IN_PROGRESS)
            .values(
                status=case(
                    (final_risk_expr > FLAG_THRESHOLD, AttemptStatus.FLAGGED.value),
                    else_=AttemptStatus.COMPLETED.value
                ),
                risk_score=final_risk_expr,
                answers={str(k): v for k, v in merged.items()},
                score=grade.score,
                percentage=grade.percentage,
                time_spent=time_spent,
                end_time=now,
            )
            .returning(ExamAttempt.risk_score, ExamAttempt.status, ExamAttempt.tab_switches)
            .execution_options(synchronize_session=False)
        ).first()
        if row is None:
            self._raise_not_in_progress(attempt_id)

        final_risk, status, tab_switches = row
        status = AttemptStatus(status)

        if status == AttemptStatus.FLAGGED:
            self.incidents.record(
                attempt,
                SUSPICIOUS_BEHAVIOR,
                f"Exam flagged for review with risk score {final_risk}",
                flag_severity(final_risk),
                {
                    "finalRiskScore": final_risk,
                    "timeSpent": time_spent,
                    "expectedMinTime": timing.expected_min_time,
                    "fastCompletion": timing.fast_completion,
                    "tabSwitches": tab_switches,
                    "suspiciousActivities": [flag.as_log_entry() for flag in attempt.suspicious_flags],
                }
            )
        self.db.commit()

        logger.info(
            f"Attempt {attempt_id} submitted: {status.value}, score {grade.score}/{grade.max_score}, "
            f"risk {final_risk}"
        )
        self._after_status_change(attempt, exam, status, final_risk, SUSPICIOUS_BEHAVIOR)

        submitted = {"id": attempt_id, "status": status, "time_spent": time_spent, "submitted_at": now}
        response = {
            "attempt": submitted,
            "warning": FLAGGED_WARNING if status == AttemptStatus.FLAGGED else None,
        }
        if exam.show_results:
            submitted.update(
                score=grade.score,
                max_score=grade.max_score,
                percentage=grade.percentage,
                passed=grade.passed,
            )
            response["review"] = present_review(exam.questions, Materialization.from_attempt(attempt), merged)
        else:
            response["message"] = REVIEW_MESSAGE
        return response
