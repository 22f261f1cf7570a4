"""
Durable access to attempt rows.

All mutating operations on an attempt go through :func:`lock_attempt`, which
takes a row lock (``SELECT ... FOR UPDATE``) for the rest of the caller's
transaction. SQLite ignores the clause and serialises writers on its own.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_session.core.errors import AttemptNotFound
from exam_session.models.orm import Answer, Attempt, AttemptStatus, Violation, utcnow

logger = logging.getLogger(__name__)


def find_attempt(db: Session, student_id: str, exam_id: str, for_update: bool = False) -> Optional[Attempt]:
    stmt = select(Attempt).where(Attempt.student_id == student_id, Attempt.exam_id == exam_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def get_attempt(db: Session, attempt_id: str, student_id: Optional[str] = None) -> Attempt:
    """Fetch an attempt; when ``student_id`` is given, foreign attempts look missing."""
    attempt = db.get(Attempt, attempt_id)
    if attempt is None or (student_id is not None and attempt.student_id != student_id):
        raise AttemptNotFound()
    return attempt


def lock_attempt(db: Session, attempt_id: str, student_id: Optional[str] = None) -> Attempt:
    stmt = (
        select(Attempt)
        .where(Attempt.id == attempt_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    attempt = db.scalar(stmt)
    if attempt is None or (student_id is not None and attempt.student_id != student_id):
        raise AttemptNotFound()
    return attempt


def create_attempt(db: Session, student_id: str, exam_id: str) -> Attempt:
    """
    Insert a fresh IN_PROGRESS attempt and commit it.

    Two first-time starts for the same (student, exam) race on the unique
    constraint; the loser re-reads the winner's row.
    """
    attempt = Attempt(
        student_id=student_id,
        exam_id=exam_id,
        status=AttemptStatus.IN_PROGRESS,
        started_at=utcnow(),
        elapsed_seconds=0,
        violation_count=0,
    )
    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Concurrent start for student={student_id} exam={exam_id}; reusing existing attempt")
        existing = find_attempt(db, student_id, exam_id)
        if existing is None:
            raise
        return existing
    return attempt


def mark_submitted(db: Session, attempt_id: str) -> bool:
    """Compare-and-set IN_PROGRESS -> SUBMITTED. True only for the caller that won."""
    stmt = (
        update(Attempt)
        .where(Attempt.id == attempt_id, Attempt.status == AttemptStatus.IN_PROGRESS)
        .values(status=AttemptStatus.SUBMITTED)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def list_answers(db: Session, attempt_id: str) -> List[Answer]:
    stmt = select(Answer).where(Answer.attempt_id == attempt_id).execution_options(populate_existing=True)
    return list(db.scalars(stmt).all())


def list_violations(db: Session, attempt_id: str) -> List[Violation]:
    stmt = select(Violation).where(Violation.attempt_id == attempt_id).order_by(Violation.created_at)
    return list(db.scalars(stmt).all())


def list_exam_attempts(db: Session, exam_id: str) -> List[Attempt]:
    stmt = select(Attempt).where(Attempt.exam_id == exam_id).order_by(Attempt.started_at)
    return list(db.scalars(stmt).all())
