"""
Scoring Engine.

``grade`` is a pure function over the answer key and the saved answers;
``apply_grade`` writes its verdicts and must run exactly once per attempt,
which the submit compare-and-set guarantees.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from exam_session.models.orm import Answer, Attempt, Question
from exam_session.services import attempt_store, catalog


@dataclass
class GradeResult:
    score: int
    max_score: int
    correct: Dict[str, bool] = field(default_factory=dict)


def grade(questions: Iterable[Question], selections: Dict[str, Optional[str]]) -> GradeResult:
    score = 0
    max_score = 0
    correct = {}
    for q in questions:
        weight = q.points if q.points is not None else 1
        max_score += weight
        ok = selections.get(q.id) is not None and selections.get(q.id) == q.correct_option
        correct[q.id] = ok
        if ok:
            score += weight
    return GradeResult(score=score, max_score=max_score, correct=correct)


def apply_grade(db: Session, attempt: Attempt) -> GradeResult:
    questions = catalog.get_questions(db, attempt.exam_id)
    answers = attempt_store.list_answers(db, attempt.id)
    result = grade(questions, {a.question_id: a.selected_option for a in answers})
    for answer in answers:
        answer.is_correct = result.correct.get(answer.question_id, False)
    attempt.score = result.score
    attempt.max_score = result.max_score
    return result


def breakdown(questions: Iterable[Question], answers: Iterable[Answer]) -> list:
    by_question = {a.question_id: a for a in answers}
    rows = []
    for q in questions:
        a = by_question.get(q.id)
        rows.append({
            "questionId": q.id,
            "position": q.position,
            "section": q.section or "General",
            "content": q.content,
            "options": q.options(),
            "correctOption": q.correct_option,
            "selectedOption": a.selected_option if a else None,
            "isFlagged": bool(a.is_flagged) if a else False,
            "isCorrect": bool(a.is_correct) if a else False,
            "points": q.points,
        })
    return rows
