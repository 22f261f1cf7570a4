"""
Progress Recorder: idempotent persistence of in-progress work.

Each question is written with a single upsert keyed on (attempt_id,
question_id) and touches only the fields the client sent, so a flag-only
save never clears a selection and concurrent saves for different questions
never overwrite each other.
"""
import logging
from typing import Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from exam_session.models.orm import Answer, Attempt, utcnow
from exam_session.services import catalog

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _upsert_answer(db: Session, attempt_id: str, question_id: str, fields: Dict) -> None:
    insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
    now = utcnow()
    if insert is not None:
        values = {
            "attempt_id": attempt_id,
            "question_id": question_id,
            "selected_option": fields.get("selected_option"),
            "is_flagged": fields.get("is_flagged", False),
            "updated_at": now,
        }
        stmt = insert(Answer).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Answer.attempt_id, Answer.question_id],
            set_={**fields, "updated_at": now},
        )
        db.execute(stmt)
        return
    answer = db.scalar(select(Answer).where(Answer.attempt_id == attempt_id, Answer.question_id == question_id))
    if answer is None:
        db.add(Answer(attempt_id=attempt_id, question_id=question_id,
                      selected_option=fields.get("selected_option"), is_flagged=fields.get("is_flagged", False)))
    else:
        for key, value in fields.items():
            setattr(answer, key, value)
    db.flush()


def record_answers(db: Session, attempt: Attempt, answers: Optional[Mapping[str, Optional[str]]],
                   flags: Optional[Mapping[str, bool]]) -> int:
    """Upsert answers/flags for a locked, in-progress attempt. Returns rows written."""
    answers = answers or {}
    flags = flags or {}
    known = catalog.question_ids(db, attempt.exam_id)
    written = 0
    for question_id in sorted(set(answers) | set(flags)):
        if question_id not in known:
            logger.warning(f"Ignoring unknown question {question_id} for attempt {attempt.id}")
            continue
        fields = {}
        if question_id in answers:
            fields["selected_option"] = answers[question_id]
        if question_id in flags:
            fields["is_flagged"] = bool(flags[question_id])
        _upsert_answer(db, attempt.id, question_id, fields)
        written += 1
    return written


def advance_elapsed(attempt: Attempt, elapsed_seconds: Optional[int]) -> bool:
    """Monotonic guard: stored elapsed time only ever grows."""
    if elapsed_seconds is None or elapsed_seconds <= (attempt.elapsed_seconds or 0):
        return False
    attempt.elapsed_seconds = int(elapsed_seconds)
    return True


def save_progress(db: Session, attempt: Attempt, answers, flags, elapsed_seconds) -> dict:
    """
    Persist a progress snapshot for a locked attempt and commit.

    A frozen attempt is left untouched and reported with ``ok=False``.
    """
    if attempt.is_frozen:
        status = attempt.status.value
        logger.warning(f"Ignoring progress save against frozen attempt {attempt.id}")
        db.rollback()
        return {"ok": False, "status": status}
    written = record_answers(db, attempt, answers, flags)
    advance_elapsed(attempt, elapsed_seconds)
    attempt_id, elapsed = attempt.id, attempt.elapsed_seconds
    db.commit()
    logger.debug(f"Saved {written} answers for attempt {attempt_id} (elapsed={elapsed}s)")
    return {"ok": True, "elapsedSeconds": elapsed}
