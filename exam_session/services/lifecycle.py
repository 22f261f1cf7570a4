"""
Attempt Lifecycle Controller.

Drives one student's attempt through NO_ATTEMPT -> IN_PROGRESS -> SUBMITTED
(-> GRADED, by review) and exposes the operations the HTTP layer calls.
Nothing is kept in process: every call reads and writes the database, and
every mutation happens under the attempt's row lock.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from exam_session.core.config import settings
from exam_session.core.errors import (
    AlreadySubmitted, AttemptExpired, ExamEnded, ExamNotActive, ExamNotStarted,
    InvalidState, NoActiveAttempt, NotEnrolled, ResultNotAvailable,
)
from exam_session.models.orm import (
    Attempt, AttemptStatus, Exam, STUDENT_VISIBLE_STATUSES, SubmitTrigger, utcnow,
)
from exam_session.services import attempt_store, catalog, progress, scoring, session_arbiter, timer, violations

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _max_violations(exam: Exam) -> int:
    return exam.max_violations if exam.max_violations is not None else settings.DEFAULT_MAX_VIOLATIONS


def check_admission(db: Session, exam: Exam, student_id: str, now: Optional[datetime] = None) -> None:
    if not catalog.is_enrolled(db, exam.class_id, student_id):
        raise NotEnrolled()
    if exam.status not in STUDENT_VISIBLE_STATUSES:
        raise ExamNotActive()
    now = now or utcnow()
    start, end = _as_utc(exam.start_time), _as_utc(exam.end_time)
    if start is not None and now < start:
        raise ExamNotStarted()
    if end is not None and now > end:
        raise ExamEnded()


def exam_info(db: Session, exam_id: str, student_id: str) -> dict:
    exam = catalog.get_exam(db, exam_id)
    if not catalog.is_enrolled(db, exam.class_id, student_id):
        raise NotEnrolled()
    attempt = attempt_store.find_attempt(db, student_id, exam_id)
    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "durationMinutes": exam.duration_minutes,
        "maxViolations": _max_violations(exam),
        "questionCount": len(catalog.question_ids(db, exam_id)),
        "status": exam.status.value,
        "startTime": exam.start_time,
        "endTime": exam.end_time,
        "attemptStatus": attempt.status.value if attempt else None,
    }


def start_attempt(db: Session, student_id: str, exam_id: str, client_meta: Optional[Dict] = None) -> dict:
    """
    Admit the student and hand out a fresh session token.

    An attempt that is already in progress gets a new token, which preempts
    whichever client held the old one.
    """
    exam = catalog.get_exam(db, exam_id)
    check_admission(db, exam, student_id)

    attempt = attempt_store.find_attempt(db, student_id, exam_id, for_update=True)
    created = attempt is None
    if created:
        attempt = attempt_store.create_attempt(db, student_id, exam_id)
        attempt = attempt_store.lock_attempt(db, attempt.id)
    if attempt.is_frozen:
        db.rollback()
        raise AlreadySubmitted()

    token = session_arbiter.issue_session(attempt)
    attempt_id = attempt.id
    db.commit()
    logger.info(
        f"{'Started' if created else 'Resumed'} attempt {attempt_id} student={student_id} exam={exam_id}"
        + (f" meta={client_meta}" if client_meta else "")
    )
    return {"attemptId": attempt_id, "sessionToken": token, "resumed": not created}


def _question_payload(exam: Exam, db: Session) -> list:
    return [
        {
            "id": q.id,
            "position": q.position,
            "section": q.section or "General",
            "content": q.content,
            "options": [{"choice": label, "text": text} for label, text in q.options().items()],
        }
        for q in catalog.get_questions(db, exam.id)
    ]


def load_for_taking(db: Session, attempt_id: str, session_token: str, student_id: Optional[str] = None) -> dict:
    attempt = attempt_store.get_attempt(db, attempt_id, student_id)
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise NoActiveAttempt()
    session_arbiter.require_current(attempt, session_token)
    exam = catalog.get_exam(db, attempt.exam_id)

    if timer.is_expired(exam, attempt):
        logger.info(f"Attempt {attempt.id} out of time on load; auto-submitting")
        submit(db, attempt.id, session_token, None, None, None, SubmitTrigger.TIMER_EXPIRY, student_id)
        raise AttemptExpired()

    answers = attempt_store.list_answers(db, attempt.id)
    return {
        "attemptId": attempt.id,
        "exam": {
            "id": exam.id,
            "title": exam.title,
            "durationMinutes": exam.duration_minutes,
            "maxViolations": _max_violations(exam),
            "questions": _question_payload(exam, db),
        },
        "savedAnswers": [
            {"questionId": a.question_id, "selectedOption": a.selected_option, "isFlagged": bool(a.is_flagged)}
            for a in answers
        ],
        "startedAt": attempt.started_at,
        "elapsedSeconds": attempt.elapsed_seconds,
        "violationCount": attempt.violation_count,
        "remainingSeconds": max(0, timer.remaining_seconds(exam, attempt)),
    }


def heartbeat(db: Session, attempt_id: str, session_token: str, student_id: Optional[str] = None) -> dict:
    return session_arbiter.heartbeat(db, attempt_id, session_token, student_id)


def save_progress(db: Session, attempt_id: str, session_token: str, answers, flags, elapsed_seconds,
                  student_id: Optional[str] = None) -> dict:
    attempt = attempt_store.lock_attempt(db, attempt_id, student_id)
    if not attempt.is_frozen:
        session_arbiter.require_current(attempt, session_token)
    return progress.save_progress(db, attempt, answers, flags, elapsed_seconds)


def report_violation(db: Session, attempt_id: str, session_token: str, violation_type: str,
                     student_id: Optional[str] = None) -> dict:
    attempt = attempt_store.lock_attempt(db, attempt_id, student_id)
    if attempt.status != AttemptStatus.IN_PROGRESS:
        db.rollback()
        raise InvalidState("Cannot log violation - exam not in progress")
    session_arbiter.require_current(attempt, session_token)
    exam = catalog.get_exam(db, attempt.exam_id)
    return violations.report_violation(db, attempt, violation_type, _max_violations(exam))


def _frozen_result(attempt: Attempt, already_submitted: bool) -> dict:
    return {
        "ok": True,
        "alreadySubmitted": already_submitted,
        "status": attempt.status.value,
        "score": attempt.score,
        "maxScore": attempt.max_score,
        "submittedAt": attempt.submitted_at,
        "trigger": attempt.submit_trigger.value if attempt.submit_trigger else None,
    }


def submit(db: Session, attempt_id: str, session_token: str, final_answers, final_flags, elapsed_seconds,
           trigger: SubmitTrigger = SubmitTrigger.MANUAL, student_id: Optional[str] = None,
           client_ip: Optional[str] = None) -> dict:
    """
    Freeze the attempt and grade it, exactly once.

    A repeat call, or the loser of a race between two submits, gets the
    frozen result back without re-scoring.
    """
    attempt = attempt_store.lock_attempt(db, attempt_id, student_id)
    if attempt.is_frozen:
        db.rollback()
        return _frozen_result(attempt, already_submitted=True)
    session_arbiter.require_current(attempt, session_token)

    progress.record_answers(db, attempt, final_answers, final_flags)
    progress.advance_elapsed(attempt, elapsed_seconds)
    db.flush()

    if not attempt_store.mark_submitted(db, attempt.id):
        db.rollback()
        logger.info(f"Submit for attempt {attempt_id} lost the race; returning frozen result")
        attempt = attempt_store.get_attempt(db, attempt_id)
        db.refresh(attempt)
        return _frozen_result(attempt, already_submitted=True)

    result = scoring.apply_grade(db, attempt)
    attempt.status = AttemptStatus.SUBMITTED
    attempt.submitted_at = utcnow()
    attempt.submit_trigger = SubmitTrigger(trigger)
    attempt.submit_ip = client_ip
    db.commit()
    logger.info(
        f"Attempt {attempt_id} submitted via {SubmitTrigger(trigger).value}: {result.score}/{result.max_score}"
    )
    return _frozen_result(attempt, already_submitted=False)


def get_result(db: Session, attempt_id: str, student_id: Optional[str] = None) -> dict:
    attempt = attempt_store.get_attempt(db, attempt_id, student_id)
    if not attempt.is_frozen:
        raise ResultNotAvailable()
    exam = catalog.get_exam(db, attempt.exam_id)
    questions = catalog.get_questions(db, exam.id)
    answers = attempt_store.list_answers(db, attempt.id)
    return {
        "attemptId": attempt.id,
        "examTitle": exam.title,
        "status": attempt.status.value,
        "score": attempt.score,
        "maxScore": attempt.max_score,
        "submittedAt": attempt.submitted_at,
        "elapsedSeconds": attempt.elapsed_seconds,
        "violationCount": attempt.violation_count,
        "trigger": attempt.submit_trigger.value if attempt.submit_trigger else None,
        "questions": scoring.breakdown(questions, answers),
    }
