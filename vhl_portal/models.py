"""SQLModel models for the VHL Abroad student portal."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from vhl_portal.utils import utcnow


class Role(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"


class OptionLetter(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class Credential(SQLModel, table=True):
    """Sign-in record owned by the identity layer; shares its id with Profile."""

    __table_args__ = (UniqueConstraint("email", name="uq_credential_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)


class Profile(SQLModel, table=True):
    """One per user. The role is assigned at creation and never self-edited."""

    id: int = Field(primary_key=True, foreign_key="credential.id")
    full_name: str
    email: str
    phone: Optional[str] = None
    role: str = Field(default=Role.STUDENT.value)  # "student" | "admin"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Batch(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str = Field(default="active")  # active | inactive
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BatchStudent(SQLModel, table=True):
    """Enrollment of a student profile in a batch, valid until access_expiry."""

    __table_args__ = (
        UniqueConstraint("batch_id", "student_id", name="uq_batch_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    batch_id: int = Field(foreign_key="batch.id")
    student_id: int = Field(foreign_key="profile.id")
    access_expiry: datetime
    created_at: datetime = Field(default_factory=utcnow)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    batch_id: int = Field(foreign_key="batch.id")
    title: str
    description: Optional[str] = None
    duration_minutes: int = Field(default=60)
    total_marks: int = Field(default=100)
    passing_marks: Optional[int] = None
    is_published: bool = Field(default=False)
    publish_result: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Question(SQLModel, table=True):
    """A multiple-choice question; order_index is unique within its exam."""

    __table_args__ = (
        UniqueConstraint("exam_id", "order_index", name="uq_question_order"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    question: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_option: str  # A | B | C | D
    marks: int = Field(default=1)
    order_index: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExamAttempt(SQLModel, table=True):
    """One attempt per (student, exam). answers maps question id -> letter."""

    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_attempt_student_exam"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    student_id: int = Field(foreign_key="profile.id")
    # JSON object keys are strings; see exam_service.parse_answers
    answers: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    is_submitted: bool = Field(default=False)
    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Result(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("attempt_id", name="uq_result_attempt"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="examattempt.id")
    exam_id: int = Field(foreign_key="exam.id")
    student_id: int = Field(foreign_key="profile.id")
    score: int
    total_marks: int
    percentage: float
    created_at: datetime = Field(default_factory=utcnow)
