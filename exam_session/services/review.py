"""Teacher-side views of attempts on exams they own."""
import logging

from sqlalchemy.orm import Session

from exam_session.core.errors import AttemptNotFound, InvalidState
from exam_session.models.orm import AttemptStatus
from exam_session.services import attempt_store, catalog, scoring

logger = logging.getLogger(__name__)


def _summary(attempt) -> dict:
    return {
        "attemptId": attempt.id,
        "studentId": attempt.student_id,
        "status": attempt.status.value,
        "score": attempt.score,
        "maxScore": attempt.max_score,
        "startedAt": attempt.started_at,
        "submittedAt": attempt.submitted_at,
        "elapsedSeconds": attempt.elapsed_seconds,
        "violationCount": attempt.violation_count,
        "trigger": attempt.submit_trigger.value if attempt.submit_trigger else None,
    }


def list_exam_attempts(db: Session, exam_id: str, teacher_id: str) -> dict:
    exam = catalog.get_owned_exam(db, exam_id, teacher_id)
    attempts = attempt_store.list_exam_attempts(db, exam.id)
    return {"examId": exam.id, "title": exam.title, "attempts": [_summary(a) for a in attempts]}


def attempt_detail(db: Session, exam_id: str, student_id: str, teacher_id: str) -> dict:
    exam = catalog.get_owned_exam(db, exam_id, teacher_id)
    attempt = attempt_store.find_attempt(db, student_id, exam.id)
    if attempt is None:
        raise AttemptNotFound("Student attempt not found")
    questions = catalog.get_questions(db, exam.id)
    answers = attempt_store.list_answers(db, attempt.id)
    return {
        **_summary(attempt),
        "submitIp": attempt.submit_ip,
        "questions": scoring.breakdown(questions, answers),
        "violations": [
            {"type": v.type, "description": v.description, "createdAt": v.created_at}
            for v in attempt_store.list_violations(db, attempt.id)
        ],
    }


def mark_graded(db: Session, exam_id: str, student_id: str, teacher_id: str) -> dict:
    """Close review of a submitted attempt. Score and answers stay as frozen at submission."""
    exam = catalog.get_owned_exam(db, exam_id, teacher_id)
    attempt = attempt_store.find_attempt(db, student_id, exam.id, for_update=True)
    if attempt is None:
        raise AttemptNotFound("Student attempt not found")
    if attempt.status == AttemptStatus.IN_PROGRESS:
        db.rollback()
        raise InvalidState("Attempt has not been submitted")
    if attempt.status == AttemptStatus.SUBMITTED:
        attempt.status = AttemptStatus.GRADED
        logger.info(f"Attempt {attempt.id} marked graded by {teacher_id}")
    db.commit()
    return _summary(attempt)
