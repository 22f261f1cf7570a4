from datetime import datetime, timezone
from typing import List, Optional
import enum
import uuid

from sqlalchemy import (
    Integer, String, Text, Boolean, DateTime, ForeignKey,
    UniqueConstraint, Index, Enum as SQLEnum,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase): pass


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExamStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


STUDENT_VISIBLE_STATUSES = (ExamStatus.PUBLISHED, ExamStatus.ACTIVE)


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    GRADED = "GRADED"


FROZEN_STATUSES = (AttemptStatus.SUBMITTED, AttemptStatus.GRADED)


class SubmitTrigger(str, enum.Enum):
    MANUAL = "manual"
    TIMER_EXPIRY = "timer_expiry"
    VIOLATION_THRESHOLD = "violation_threshold"


OPTION_LABELS = ("A", "B", "C", "D")

# ========== Catalog (read-only for this service) ==========

class ClassRoom(Base):
    __tablename__ = "classes"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255))
    teacher_id: Mapped[str] = mapped_column(String(255), index=True)


class Enrollment(Base):
    __tablename__ = "class_students"
    __table_args__ = (UniqueConstraint("class_id", "student_id", name="uq_class_student"),)
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    class_id: Mapped[str] = mapped_column(String(36), ForeignKey("classes.id", ondelete="CASCADE"))
    student_id: Mapped[str] = mapped_column(String(255), index=True)


class Exam(Base):
    __tablename__ = "exams"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    class_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("classes.id", ondelete="SET NULL"), nullable=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer)
    max_violations: Mapped[int] = mapped_column(Integer, default=3)
    status: Mapped[ExamStatus] = mapped_column(SQLEnum(ExamStatus), default=ExamStatus.DRAFT)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    questions: Mapped[List["Question"]] = relationship(back_populates="exam", order_by="Question.position")


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (Index("idx_questions_exam_position", "exam_id", "position"),)
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    exam_id: Mapped[str] = mapped_column(String(36), ForeignKey("exams.id", ondelete="CASCADE"))
    position: Mapped[int] = mapped_column(Integer)
    content: Mapped[str] = mapped_column(Text)
    section: Mapped[str] = mapped_column(String(100), default="General")
    option_a: Mapped[str] = mapped_column(Text)
    option_b: Mapped[str] = mapped_column(Text)
    option_c: Mapped[str] = mapped_column(Text)
    option_d: Mapped[str] = mapped_column(Text)
    correct_option: Mapped[str] = mapped_column(String(1))
    points: Mapped[int] = mapped_column(Integer, default=1)

    exam: Mapped["Exam"] = relationship(back_populates="questions")

    def options(self) -> dict:
        return {"A": self.option_a, "B": self.option_b, "C": self.option_c, "D": self.option_d}

# ========== Attempts ==========

class Attempt(Base):
    __tablename__ = "attempts"
    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_attempt_student_exam"),
        Index("idx_attempts_exam", "exam_id"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(String(255))
    exam_id: Mapped[str] = mapped_column(String(36), ForeignKey("exams.id"))
    status: Mapped[AttemptStatus] = mapped_column(SQLEnum(AttemptStatus), default=AttemptStatus.IN_PROGRESS)
    session_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    elapsed_seconds: Mapped[int] = mapped_column(Integer, default=0)
    violation_count: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    submit_trigger: Mapped[Optional[SubmitTrigger]] = mapped_column(SQLEnum(SubmitTrigger), nullable=True)
    submit_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    exam: Mapped["Exam"] = relationship()
    answers: Mapped[List["Answer"]] = relationship(back_populates="attempt")
    violations: Mapped[List["Violation"]] = relationship(back_populates="attempt", order_by="Violation.created_at")

    @property
    def is_frozen(self) -> bool:
        return self.status in FROZEN_STATUSES


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),)
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    attempt_id: Mapped[str] = mapped_column(String(36), ForeignKey("attempts.id"))
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("questions.id"))
    selected_option: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False)
    is_correct: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    attempt: Mapped["Attempt"] = relationship(back_populates="answers")


class Violation(Base):
    __tablename__ = "violations"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    attempt_id: Mapped[str] = mapped_column(String(36), ForeignKey("attempts.id"), index=True)
    type: Mapped[str] = mapped_column(String(50))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    attempt: Mapped["Attempt"] = relationship(back_populates="violations")
