from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from ....core.database import get_db
from ....api.deps import get_current_teacher
from ....models.exam import Exam, ExamAttempt
from ....models.user import User
from ....schemas.exam import ExamCreate, ExamUpdate, ExamOut, ExamWithStats, ExamResults, IncidentOut
from ....services.exam_service import ExamService
from ....services.incident_service import IncidentService

router = APIRouter()


def _get_own_exam(db: Session, exam_id: int, teacher: User) -> Exam:
    exam = ExamService(db).get_exam(exam_id)
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    if exam.teacher_id != teacher.id and not teacher.is_superuser:
        raise HTTPException(status_code=403, detail="Access denied")
    return exam


def _get_own_attempt(db: Session, attempt_id: str, teacher: User) -> ExamAttempt:
    attempt = db.query(ExamAttempt).filter(ExamAttempt.id == attempt_id).first()
    if not attempt:
        raise HTTPException(status_code=404, detail="Exam attempt not found")
    if attempt.exam.teacher_id != teacher.id and not teacher.is_superuser:
        raise HTTPException(status_code=403, detail="Access denied")
    return attempt


@router.post("/exams", response_model=ExamOut, status_code=status.HTTP_201_CREATED)
def create_exam(
    exam_data: ExamCreate,
    current_user: User = Depends(get_current_teacher),
    db: Session = Depends(get_db)
):
    return ExamService(db).create_exam(current_user.id, exam_data)


@router.get("/exams", response_model=List[ExamWithStats])
def list_exams(
    current_user: User = Depends(get_current_teacher),
    db: Session = Depends(get_db)
):
    return ExamService(db).list_teacher_exams_with_stats(current_user.id)


@router.patch("/exams/{exam_id}", response_model=ExamOut)
def update_exam(
    exam_id: int,
    exam_data: ExamUpdate,
    current_user: User = Depends(get_current_teacher),
    db: Session = Depends(get_db)
):
    exam = _get_own_exam(db, exam_id, current_user)
    return ExamService(db).update_exam(exam, exam_data)


@router.delete("/exams/{exam_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_exam(
    exam_id: int,
    current_user: User = Depends(get_current_teacher),
    db: Session = Depends(get_db)
):
    exam = _get_own_exam(db, exam_id, current_user)
    ExamService(db).delete_exam(exam)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/exams/{exam_id}/results", response_model=ExamResults)
def get_exam_results(
    exam_id: int,
    current_user: User = Depends(get_current_teacher),
    db: Session = Depends(get_db)
):
    exam = _get_own_exam(db, exam_id, current_user)
    attempts = ExamService(db).exam_results(exam)
    return {
        "exam": exam,
        "attempts": [
            {
                "id": attempt.id,
                "student": attempt.student,
                "status": attempt.status,
                "score": attempt.score or 0,
                "percentage": attempt.percentage or 0,
                "time_spent": attempt.time_spent or 0,
                "risk_score": attempt.risk_score,
                "tab_switches": attempt.tab_switches,
                "submitted_at": attempt.end_time or attempt.start_time,
                "cheating_incidents": attempt.incidents,
            }
            for attempt in attempts
        ],
    }


@router.get("/attempts/{attempt_id}/incidents", response_model=List[IncidentOut])
def get_attempt_incidents(
    attempt_id: str,
    current_user: User = Depends(get_current_teacher),
    db: Session = Depends(get_db)
):
    attempt = _get_own_attempt(db, attempt_id, current_user)
    return IncidentService(db).get_attempt_incidents(attempt.id)


@router.get("/attempts/{attempt_id}/statistics")
def get_attempt_statistics(
    attempt_id: str,
    current_user: User = Depends(get_current_teacher),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    attempt = _get_own_attempt(db, attempt_id, current_user)
    stats = IncidentService(db).get_attempt_statistics(attempt.id)
    stats["riskScore"] = attempt.risk_score
    stats["status"] = attempt.status.value
    return stats
