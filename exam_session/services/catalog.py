"""Read-only lookups into the exam catalog owned by the authoring side."""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from exam_session.core.errors import ExamNotFound
from exam_session.models.orm import ClassRoom, Enrollment, Exam, Question


def get_exam(db: Session, exam_id: str) -> Exam:
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise ExamNotFound()
    return exam


def get_questions(db: Session, exam_id: str) -> List[Question]:
    stmt = select(Question).where(Question.exam_id == exam_id).order_by(Question.position)
    return list(db.scalars(stmt).all())


def question_ids(db: Session, exam_id: str) -> set:
    return set(db.scalars(select(Question.id).where(Question.exam_id == exam_id)).all())


def is_enrolled(db: Session, class_id: Optional[str], student_id: str) -> bool:
    if not class_id:
        return False
    stmt = select(Enrollment.id).where(Enrollment.class_id == class_id, Enrollment.student_id == student_id).limit(1)
    return db.scalar(stmt) is not None


def get_owned_exam(db: Session, exam_id: str, teacher_id: str) -> Exam:
    """Exam whose class belongs to the given teacher; anything else is reported as missing."""
    stmt = select(Exam).join(ClassRoom, ClassRoom.id == Exam.class_id).where(Exam.id == exam_id, ClassRoom.teacher_id == teacher_id)
    exam = db.scalar(stmt)
    if exam is None:
        raise ExamNotFound()
    return exam
