from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ....core.database import get_db
from ....api.deps import get_current_student, get_client_ip
from ....models.exam import Exam, ExamAttempt
from ....models.user import User
from ....schemas.exam import (
    AvailableExam, ExamPageResponse, StartAttemptRequest, StartAttemptResponse,
    ViolationReportRequest, ViolationResponse, SaveAnswersRequest, SaveAnswersResponse,
    SubmitAttemptRequest, SubmitAttemptResponse
)
from ....services.attempt_service import AttemptService
from ....services.exam_service import ExamService

router = APIRouter()


def _get_exam_or_404(db: Session, exam_id: int) -> Exam:
    exam = ExamService(db).get_exam(exam_id)
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    return exam


def _get_attempt_or_404(service: AttemptService, exam_id: int, attempt_id: str, student: User) -> ExamAttempt:
    attempt = service.get_student_attempt(exam_id, attempt_id, student.id)
    if not attempt:
        raise HTTPException(status_code=404, detail="Exam attempt not found")
    return attempt


@router.get("", response_model=List[AvailableExam])
def list_available_exams(
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    return ExamService(db).list_available_for_student(current_user.id)


@router.get("/{exam_id}", response_model=ExamPageResponse)
def get_exam(
    exam_id: int,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    exam = _get_exam_or_404(db, exam_id)
    return AttemptService(db).get_exam_page(exam, current_user.id)


@router.post("/{exam_id}", response_model=StartAttemptResponse, status_code=status.HTTP_201_CREATED)
def start_exam_attempt(
    exam_id: int,
    request: Request,
    body: StartAttemptRequest = StartAttemptRequest(),
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    exam = _get_exam_or_404(db, exam_id)
    service = AttemptService(db)
    attempt = service.start_attempt(
        exam,
        current_user.id,
        ip_address=get_client_ip(request),
        user_agent=body.user_agent or request.headers.get("user-agent"),
        screen_resolution=body.screen_resolution
    )
    return {"attempt": service.attempt_view(attempt, exam)}


@router.post(
    "/{exam_id}/attempts/{attempt_id}",
    response_model=ViolationResponse,
    response_model_exclude_none=True
)
def report_violation(
    exam_id: int,
    attempt_id: str,
    report: ViolationReportRequest,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    exam = _get_exam_or_404(db, exam_id)
    service = AttemptService(db)
    attempt = _get_attempt_or_404(service, exam_id, attempt_id, current_user)
    return service.report_violation(attempt, exam, report.root)


@router.patch("/{exam_id}/attempts/{attempt_id}/answers", response_model=SaveAnswersResponse)
def save_answers(
    exam_id: int,
    attempt_id: str,
    body: SaveAnswersRequest,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    exam = _get_exam_or_404(db, exam_id)
    service = AttemptService(db)
    attempt = _get_attempt_or_404(service, exam_id, attempt_id, current_user)
    answered = service.save_answers(attempt, exam, body.answers)
    return {"attempt_id": attempt_id, "answered": answered}


@router.put("/{exam_id}/attempts/{attempt_id}", response_model=SubmitAttemptResponse)
def submit_exam_attempt(
    exam_id: int,
    attempt_id: str,
    body: SubmitAttemptRequest,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    exam = _get_exam_or_404(db, exam_id)
    service = AttemptService(db)
    attempt = _get_attempt_or_404(service, exam_id, attempt_id, current_user)
    return service.submit_attempt(attempt, exam, body.answers, body.time_spent)
