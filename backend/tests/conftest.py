import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from examguard.core.database import Base, engine, SessionLocal
from examguard.core.security import create_access_token, get_password_hash
from examguard.main import app
from examguard.models import Exam, ExamAttempt, User, UserRole
from examguard.utils.timezone import utc_now

QUESTIONS = [
    {"question": "2 + 2 = ?", "options": ["3", "4", "5", "22"], "correctAnswer": 1, "marks": 2},
    {"question": "Capital of France?", "options": ["Berlin", "Madrid", "Paris"], "correctAnswer": 2, "marks": 3},
    {"question": "HTTP status for Not Found?", "options": ["200", "301", "404", "500"], "correctAnswer": 2, "marks": 5},
]


@pytest.fixture
def db():
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture
def client(db):
    with TestClient(app) as test_client:
        yield test_client


def make_user(db, email: str, role: UserRole) -> User:
    user = User(
        full_name=email.split("@")[0].title(),
        email=email,
        hashed_password=get_password_hash("password123"),
        role=role
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': user.email})}"}


@pytest.fixture
def teacher(db):
    return make_user(db, "teacher@example.com", UserRole.TEACHER)


@pytest.fixture
def student(db):
    return make_user(db, "student@example.com", UserRole.STUDENT)


@pytest.fixture
def teacher_headers(teacher):
    return auth_headers(teacher)


@pytest.fixture
def student_headers(student):
    return auth_headers(student)


@pytest.fixture
def make_exam(db, teacher):
    def _make_exam(**overrides) -> Exam:
        now = utc_now()
        values = dict(
            teacher_id=teacher.id,
            title="Networking basics",
            description="Final exam",
            questions=[dict(q) for q in QUESTIONS],
            total_marks=10,
            passing_marks=5,
            duration=60,
            max_attempts=2,
            shuffle_questions=True,
            shuffle_options=True,
            proctoring_enabled=True,
            allow_tab_switch=False,
            max_tab_switches=0,
            full_screen_required=True,
            show_results=True,
            start_date=now - timedelta(hours=1),
            end_date=now + timedelta(days=1),
            is_active=True,
        )
        values.update(overrides)
        exam = Exam(**values)
        db.add(exam)
        db.commit()
        db.refresh(exam)
        return exam
    return _make_exam


@pytest.fixture
def exam(make_exam):
    return make_exam()


def start_attempt(client, exam_id: int, headers: dict) -> dict:
    response = client.post(f"/api/v1/exams/{exam_id}", json={"screenResolution": "1920x1080"}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["attempt"]


def backdate_attempt(db, attempt_id: str, minutes: int):
    db.query(ExamAttempt).filter(ExamAttempt.id == attempt_id).update(
        {"start_time": utc_now() - timedelta(minutes=minutes)}, synchronize_session=False
    )
    db.commit()


def correct_presented_answers(presented_questions: list) -> dict:
    """Map each presented question to the presented index of its correct option."""
    by_text = {q["question"]: q for q in QUESTIONS}
    answers = {}
    for presented in presented_questions:
        original = by_text[presented["question"]]
        correct_text = original["options"][original["correctAnswer"]]
        answers[str(presented["index"])] = presented["options"].index(correct_text)
    return answers


def report(client, exam_id: int, attempt_id: str, headers: dict, event_type: str, **extra) -> dict:
    body = {"eventType": event_type, "timestamp": utc_now().isoformat() + "Z", "details": extra.pop("details", {})}
    body.update(extra)
    return client.post(f"/api/v1/exams/{exam_id}/attempts/{attempt_id}", json=body, headers=headers)
