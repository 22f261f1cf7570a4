"""Timer Reconciler: server-side elapsed seconds are the only clock that counts."""
from exam_session.models.orm import Attempt, Exam


def duration_seconds(exam: Exam) -> int:
    return int(exam.duration_minutes) * 60


def remaining_seconds(exam: Exam, attempt: Attempt) -> int:
    return duration_seconds(exam) - int(attempt.elapsed_seconds or 0)


def is_expired(exam: Exam, attempt: Attempt) -> bool:
    return remaining_seconds(exam, attempt) <= 0
