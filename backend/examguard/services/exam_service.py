import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..core.cache import cache
from ..core.config import settings
from ..models.enums import AttemptStatus
from ..models.exam import Exam, ExamAttempt
from ..models.incident import CheatingIncident
from ..schemas.exam import ExamCreate, ExamUpdate
from ..utils.timezone import to_naive_utc, utc_now
from .exceptions import ExamLocked, InvalidExamDefinition

logger = logging.getLogger(__name__)

# Fields a teacher may still change once students have started the exam
EDITABLE_AFTER_START = {
    "title", "title_secondary", "description", "description_secondary", "end_date", "is_active"
}

TERMINAL_STATUSES = (AttemptStatus.COMPLETED, AttemptStatus.FLAGGED, AttemptStatus.FAILED)

# Running attempts above this risk already count as flagged in teacher stats
FLAGGED_RISK_THRESHOLD = 50


def teacher_stats_cache_key(teacher_id: int) -> str:
    return f"exam_stats:teacher:{teacher_id}"


def validate_exam_definition(questions: List[Dict[str, Any]], total_marks: int, passing_marks: int,
                             start_date, end_date) -> None:
    if not questions:
        raise InvalidExamDefinition("An exam needs at least one question")

    for index, question in enumerate(questions):
        options = question.get("options") or []
        if len(options) < 2:
            raise InvalidExamDefinition(f"Question {index + 1} needs at least two options")
        if not 0 <= question.get("correctAnswer", -1) < len(options):
            raise InvalidExamDefinition(f"Question {index + 1} has an invalid correct answer")

    calculated = sum(q.get("marks", 0) for q in questions)
    if calculated != total_marks:
        raise InvalidExamDefinition(
            f"Total marks mismatch. Questions add up to {calculated} but totalMarks is {total_marks}",
            calculatedTotal=calculated,
            providedTotal=total_marks,
        )
    if passing_marks > total_marks:
        raise InvalidExamDefinition("Passing marks cannot exceed total marks")
    if start_date >= end_date:
        raise InvalidExamDefinition("End date must be after start date")


def _questions_payload(questions) -> List[Dict[str, Any]]:
    return [q.model_dump(by_alias=True) if hasattr(q, "model_dump") else dict(q) for q in questions]


class ExamService:
    def __init__(self, db: Session):
        self.db = db

    def get_exam(self, exam_id: int) -> Optional[Exam]:
        return self.db.query(Exam).filter(Exam.id == exam_id).first()

    def has_attempts(self, exam_id: int) -> bool:
        return self.db.query(ExamAttempt.id).filter(ExamAttempt.exam_id == exam_id).first() is not None

    def create_exam(self, teacher_id: int, exam_data: ExamCreate) -> Exam:
        questions = _questions_payload(exam_data.questions)
        start_date = to_naive_utc(exam_data.start_date)
        end_date = to_naive_utc(exam_data.end_date)
        validate_exam_definition(questions, exam_data.total_marks, exam_data.passing_marks, start_date, end_date)

        values = exam_data.model_dump(exclude={"questions", "start_date", "end_date"})
        exam = Exam(
            teacher_id=teacher_id,
            questions=questions,
            start_date=start_date,
            end_date=end_date,
            **values
        )
        self.db.add(exam)
        self.db.commit()
        self.db.refresh(exam)

        cache.delete(teacher_stats_cache_key(teacher_id))
        logger.info(f"Exam {exam.id} created by teacher {teacher_id} with {len(questions)} questions")
        return exam

    def update_exam(self, exam: Exam, exam_data: ExamUpdate) -> Exam:
        update_data = exam_data.model_dump(exclude_unset=True)

        if self.has_attempts(exam.id):
            locked = sorted(set(update_data) - EDITABLE_AFTER_START)
            if locked:
                raise ExamLocked(
                    f"Cannot modify {', '.join(locked)} after students have started the exam",
                    lockedFields=locked,
                )

        if "questions" in update_data:
            update_data["questions"] = _questions_payload(exam_data.questions)
        for field in ("start_date", "end_date"):
            if update_data.get(field) is not None:
                update_data[field] = to_naive_utc(update_data[field])

        validate_exam_definition(
            update_data.get("questions", exam.questions),
            update_data.get("total_marks", exam.total_marks),
            update_data.get("passing_marks", exam.passing_marks),
            update_data.get("start_date", exam.start_date),
            update_data.get("end_date", exam.end_date),
        )

        for field, value in update_data.items():
            setattr(exam, field, value)

        self.db.commit()
        self.db.refresh(exam)
        cache.delete(teacher_stats_cache_key(exam.teacher_id))
        logger.info(f"Exam {exam.id} updated: {', '.join(sorted(update_data))}")
        return exam

    def delete_exam(self, exam: Exam) -> None:
        if self.has_attempts(exam.id):
            raise ExamLocked("Cannot delete an exam that students have already attempted")
        exam_id, teacher_id = exam.id, exam.teacher_id
        self.db.delete(exam)
        self.db.commit()
        cache.delete(teacher_stats_cache_key(teacher_id))
        logger.info(f"Exam {exam_id} deleted by teacher {teacher_id}")

    def exam_stats(self, exam: Exam) -> Dict[str, Any]:
        attempts = self.db.query(ExamAttempt).filter(ExamAttempt.exam_id == exam.id).all()
        finished = [a for a in attempts if a.status in TERMINAL_STATUSES]
        graded = [a for a in finished if a.score is not None]
        passed = [a for a in graded if a.score >= exam.passing_marks]

        incident_count = self.db.query(func.count(CheatingIncident.id)).join(
            ExamAttempt, CheatingIncident.exam_attempt_id == ExamAttempt.id
        ).filter(ExamAttempt.exam_id == exam.id).scalar() or 0

        return {
            "totalAttempts": len(attempts),
            "uniqueStudents": len({a.student_id for a in attempts}),
            "completedAttempts": len([a for a in attempts if a.status == AttemptStatus.COMPLETED]),
            "flaggedAttempts": len([
                a for a in attempts if a.status == AttemptStatus.FLAGGED or (a.risk_score or 0) > FLAGGED_RISK_THRESHOLD
            ]),
            "averageScore": round(sum(a.percentage or 0 for a in graded) / len(graded), 2) if graded else 0.0,
            "passRate": round(len(passed) / len(graded) * 100, 2) if graded else 0.0,
            "cheatingIncidents": incident_count,
        }

    def list_teacher_exams_with_stats(self, teacher_id: int) -> List[Dict[str, Any]]:
        """Exams of one teacher, newest first, each with aggregated attempt stats.

        The stats part is cached per teacher and dropped whenever an attempt of
        one of their exams changes status.
        """
        exams = self.db.query(Exam).filter(Exam.teacher_id == teacher_id).order_by(Exam.created_at.desc()).all()

        cache_key = teacher_stats_cache_key(teacher_id)
        cached_stats = cache.get(cache_key) or {}

        stats_by_exam = {}
        for exam in exams:
            stats = cached_stats.get(str(exam.id))
            if stats is None:
                stats = self.exam_stats(exam)
            stats_by_exam[str(exam.id)] = stats

        cache.set(cache_key, stats_by_exam, ttl=settings.exam_stats_cache_ttl)
        return [{"exam": exam, "stats": stats_by_exam[str(exam.id)]} for exam in exams]

    def exam_results(self, exam: Exam) -> List[ExamAttempt]:
        return self.db.query(ExamAttempt).options(
            joinedload(ExamAttempt.student),
            joinedload(ExamAttempt.incidents),
        ).filter(
            ExamAttempt.exam_id == exam.id,
            ExamAttempt.status.in_(TERMINAL_STATUSES)
        ).order_by(ExamAttempt.end_time.desc()).all()

    def list_available_for_student(self, student_id: int) -> List[Dict[str, Any]]:
        now = utc_now()
        exams = self.db.query(Exam).filter(
            Exam.is_active.is_(True),
            Exam.start_date <= now,
            Exam.end_date >= now
        ).order_by(Exam.start_date).all()

        available = []
        for exam in exams:
            attempts = self.db.query(ExamAttempt).filter(
                ExamAttempt.exam_id == exam.id,
                ExamAttempt.student_id == student_id
            ).order_by(ExamAttempt.start_time.desc()).all()

            finished = [a for a in attempts if a.status in TERMINAL_STATUSES]
            in_progress = any(a.status == AttemptStatus.IN_PROGRESS for a in attempts)
            scores = [a.score for a in finished if a.score is not None]
            best_score = max(scores) if scores else None

            available.append({
                "exam": exam,
                "user_stats": {
                    "attempt_count": len(attempts),
                    "finished_attempts": len(finished),
                    "can_attempt": in_progress or len(finished) < exam.max_attempts,
                    "has_attempt_in_progress": in_progress,
                    "best_score": best_score,
                    "has_passed": best_score is not None and best_score >= exam.passing_marks,
                    "last_attempt_status": attempts[0].status if attempts else None,
                },
            })
        return available
