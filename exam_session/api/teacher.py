from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from exam_session.api.student import CamelModel, QuestionReview
from exam_session.core.auth import TEACHER, TokenData, require_roles
from exam_session.core.database import get_db
from exam_session.services import review

router = APIRouter()


class AttemptSummary(CamelModel):
    attempt_id: str
    student_id: str
    status: str
    score: Optional[int] = None
    max_score: Optional[int] = None
    started_at: datetime
    submitted_at: Optional[datetime] = None
    elapsed_seconds: int
    violation_count: int
    trigger: Optional[str] = None


class ExamAttempts(CamelModel):
    exam_id: str
    title: str
    attempts: List[AttemptSummary]


class ViolationEntry(CamelModel):
    type: str
    description: Optional[str] = None
    created_at: datetime


class AttemptDetail(AttemptSummary):
    submit_ip: Optional[str] = None
    questions: List[QuestionReview]
    violations: List[ViolationEntry]


@router.get("/exams/{exam_id}/attempts", response_model=ExamAttempts)
def list_attempts(exam_id: str, user: TokenData = Depends(require_roles(TEACHER)), db: Session = Depends(get_db)):
    return review.list_exam_attempts(db, exam_id, user.sub)


@router.get("/exams/{exam_id}/attempts/{student_id}", response_model=AttemptDetail)
def attempt_detail(exam_id: str, student_id: str, user: TokenData = Depends(require_roles(TEACHER)),
                   db: Session = Depends(get_db)):
    return review.attempt_detail(db, exam_id, student_id, user.sub)


@router.post("/exams/{exam_id}/attempts/{student_id}/graded", response_model=AttemptSummary)
def mark_graded(exam_id: str, student_id: str, user: TokenData = Depends(require_roles(TEACHER)),
                db: Session = Depends(get_db)):
    return review.mark_graded(db, exam_id, student_id, user.sub)
