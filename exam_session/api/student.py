from datetime import datetime
from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field, constr
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from exam_session.core.auth import STUDENT, TokenData, require_roles
from exam_session.core.database import get_db
from exam_session.models.orm import SubmitTrigger
from exam_session.services import lifecycle

router = APIRouter()

OptionLabel = Literal["A", "B", "C", "D"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExamInfo(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    duration_minutes: int
    max_violations: int
    question_count: int
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    attempt_status: Optional[str] = None


class StartIn(CamelModel):
    client_meta: Optional[Dict[str, str]] = None


class AttemptStarted(CamelModel):
    attempt_id: str
    session_token: str
    resumed: bool


class OptionOut(CamelModel):
    choice: OptionLabel
    text: str


class QuestionOut(CamelModel):
    id: str
    position: int
    section: str
    content: str
    options: List[OptionOut]


class ExamContent(CamelModel):
    id: str
    title: str
    duration_minutes: int
    max_violations: int
    questions: List[QuestionOut]


class SavedAnswer(CamelModel):
    question_id: str
    selected_option: Optional[OptionLabel] = None
    is_flagged: bool = False


class TakingState(CamelModel):
    attempt_id: str
    exam: ExamContent
    saved_answers: List[SavedAnswer]
    started_at: datetime
    elapsed_seconds: int
    violation_count: int
    remaining_seconds: int


class SessionIn(CamelModel):
    session_token: constr(min_length=1)


class HeartbeatOut(BaseModel):
    kicked: bool
    reason: Optional[str] = None
    message: Optional[str] = None


class ProgressIn(SessionIn):
    answers: Dict[str, Optional[OptionLabel]] = Field(default_factory=dict)
    flags: Dict[str, bool] = Field(default_factory=dict)
    elapsed_seconds: Optional[int] = Field(default=None, ge=0)


class ProgressOut(CamelModel):
    ok: bool
    elapsed_seconds: Optional[int] = None
    status: Optional[str] = None


class ViolationIn(SessionIn):
    type: constr(min_length=1, max_length=50)


class ViolationOut(CamelModel):
    violation_count: int
    max_violations: int
    should_auto_submit: bool
    message: str


class SubmitIn(ProgressIn):
    trigger: SubmitTrigger = SubmitTrigger.MANUAL


class SubmitOut(CamelModel):
    ok: bool
    already_submitted: bool
    status: str
    score: Optional[int] = None
    max_score: Optional[int] = None
    submitted_at: Optional[datetime] = None
    trigger: Optional[SubmitTrigger] = None


class QuestionReview(CamelModel):
    question_id: str
    position: int
    section: str
    content: str
    options: Dict[str, str]
    correct_option: str
    selected_option: Optional[str] = None
    is_flagged: bool
    is_correct: bool
    points: int


class ResultOut(CamelModel):
    attempt_id: str
    exam_title: str
    status: str
    score: Optional[int] = None
    max_score: Optional[int] = None
    submitted_at: Optional[datetime] = None
    elapsed_seconds: int
    violation_count: int
    trigger: Optional[SubmitTrigger] = None
    questions: List[QuestionReview]


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


@router.get("/exams/{exam_id}", response_model=ExamInfo)
def exam_info(exam_id: str, user: TokenData = Depends(require_roles(STUDENT)), db: Session = Depends(get_db)):
    return lifecycle.exam_info(db, exam_id, user.sub)


@router.post("/exams/{exam_id}/attempt", response_model=AttemptStarted)
def start_attempt(exam_id: str, payload: Optional[StartIn] = None, user: TokenData = Depends(require_roles(STUDENT)),
                  db: Session = Depends(get_db)):
    return lifecycle.start_attempt(db, user.sub, exam_id, payload.client_meta if payload else None)


@router.get("/attempts/{attempt_id}", response_model=TakingState)
def load_for_taking(attempt_id: str, session_token: str = Query(..., alias="sessionToken"),
                    user: TokenData = Depends(require_roles(STUDENT)), db: Session = Depends(get_db)):
    return lifecycle.load_for_taking(db, attempt_id, session_token, user.sub)


@router.post("/attempts/{attempt_id}/heartbeat", response_model=HeartbeatOut, response_model_exclude_none=True)
def heartbeat(attempt_id: str, payload: SessionIn, user: TokenData = Depends(require_roles(STUDENT)),
              db: Session = Depends(get_db)):
    return lifecycle.heartbeat(db, attempt_id, payload.session_token, user.sub)


@router.put("/attempts/{attempt_id}/progress", response_model=ProgressOut)
def save_progress(attempt_id: str, payload: ProgressIn, user: TokenData = Depends(require_roles(STUDENT)),
                  db: Session = Depends(get_db)):
    return lifecycle.save_progress(db, attempt_id, payload.session_token, payload.answers, payload.flags,
                                   payload.elapsed_seconds, user.sub)


@router.post("/attempts/{attempt_id}/violations", response_model=ViolationOut)
def report_violation(attempt_id: str, payload: ViolationIn, user: TokenData = Depends(require_roles(STUDENT)),
                     db: Session = Depends(get_db)):
    return lifecycle.report_violation(db, attempt_id, payload.session_token, payload.type, user.sub)


@router.post("/attempts/{attempt_id}/submit", response_model=SubmitOut)
def submit(attempt_id: str, payload: SubmitIn, request: Request, user: TokenData = Depends(require_roles(STUDENT)),
           db: Session = Depends(get_db)):
    return lifecycle.submit(db, attempt_id, payload.session_token, payload.answers, payload.flags,
                            payload.elapsed_seconds, payload.trigger, user.sub, _client_ip(request))


@router.get("/attempts/{attempt_id}/result", response_model=ResultOut)
def get_result(attempt_id: str, user: TokenData = Depends(require_roles(STUDENT)), db: Session = Depends(get_db)):
    return lifecycle.get_result(db, attempt_id, user.sub)
