import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exam_session.core.auth import STUDENT, TEACHER, create_token
from exam_session.core.database import get_db
from exam_session.main import app
from exam_session.models.orm import Base, ClassRoom, Enrollment, Exam, ExamStatus, Question

STUDENT_A = "student-a"
STUDENT_B = "student-b"
TEACHER_T = "teacher-t"


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_exam(db):
    """Seed a class, an exam with ``n_questions`` and enrollments; returns the exam id."""
    def _make(n_questions=10, max_violations=3, duration_minutes=60, status=ExamStatus.ACTIVE,
              students=(STUDENT_A,), start_time=None, end_time=None, class_id="class-1"):
        if db.get(ClassRoom, class_id) is None:
            db.add(ClassRoom(id=class_id, name="Period 3", teacher_id=TEACHER_T))
        for sid in students:
            if db.query(Enrollment).filter_by(class_id=class_id, student_id=sid).first() is None:
                db.add(Enrollment(class_id=class_id, student_id=sid))
        exam = Exam(class_id=class_id, title="Unit Test", description="Chapter 4", duration_minutes=duration_minutes,
                    max_violations=max_violations, status=status, start_time=start_time, end_time=end_time)
        db.add(exam)
        db.flush()
        for i in range(n_questions):
            db.add(Question(
                id=f"{exam.id[:8]}-q{i + 1}", exam_id=exam.id, position=i + 1, content=f"Question {i + 1}",
                option_a="alpha", option_b="bravo", option_c="charlie", option_d="delta",
                correct_option="ABCD"[i % 4], points=1,
            ))
        db.commit()
        return exam.id
    return _make


def question_ids(exam_id, n):
    return [f"{exam_id[:8]}-q{i + 1}" for i in range(n)]


def correct_for(index):
    return "ABCD"[index % 4]


def wrong_for(index):
    return "ABCD"[(index + 1) % 4]


@pytest.fixture
def api(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user_id=STUDENT_A, roles=(STUDENT,)):
    return {"Authorization": f"Bearer {create_token(user_id, list(roles))}"}


@pytest.fixture
def student_client(api):
    api.headers.update(auth_headers(STUDENT_A))
    return api


@pytest.fixture
def teacher_headers():
    return auth_headers(TEACHER_T, (TEACHER,))


def hours(n):
    return datetime.now(timezone.utc) + timedelta(hours=n)
