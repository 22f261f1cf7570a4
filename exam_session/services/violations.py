"""
Violation Tracker.

Counts exactly what it is told: duplicate reports for one physical event are
the client's to debounce. The auto-submit flag is authoritative but the
tracker never submits by itself.
"""
import logging

from sqlalchemy.orm import Session

from exam_session.models.orm import Attempt, Violation, utcnow

logger = logging.getLogger(__name__)


def should_auto_submit(violation_count: int, max_violations: int) -> bool:
    return violation_count >= max_violations


def _message(violation_count: int, max_violations: int) -> str:
    if should_auto_submit(violation_count, max_violations):
        return "Max violations reached. Exam will be auto-submitted."
    return f"Violation logged. {max_violations - violation_count} chances remaining."


def report_violation(db: Session, attempt: Attempt, violation_type: str, max_violations: int) -> dict:
    """
    Increment the counter and append a log row in one transaction.

    The caller holds the row lock and has already checked the attempt is in progress.
    """
    attempt.violation_count = (attempt.violation_count or 0) + 1
    db.add(Violation(
        attempt_id=attempt.id,
        type=violation_type,
        description=f"Student violated exam rules: {violation_type}",
        created_at=utcnow(),
    ))
    count = attempt.violation_count
    attempt_id = attempt.id
    db.commit()
    auto = should_auto_submit(count, max_violations)
    logger.info(f"Violation {violation_type} on attempt {attempt_id}: {count}/{max_violations}" + (" (auto-submit)" if auto else ""))
    return {
        "violationCount": count,
        "maxViolations": max_violations,
        "shouldAutoSubmit": auto,
        "message": _message(count, max_violations),
    }
