"""Exam administration and results overview."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from vhl_portal.access import require_capability
from vhl_portal.config import ADMIN_PASS_PERCENTAGE
from vhl_portal.errors import NotFound, ValidationFailed
from vhl_portal.models import (
    Batch,
    BatchStudent,
    Exam,
    ExamAttempt,
    Profile,
    Question,
    Result,
    Role,
)
from vhl_portal.services.exam_service import effective_passing_marks, get_exam
from vhl_portal.utils import sanitize_plain, utcnow

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200


@dataclass
class ExamSummary:
    exam: Exam
    batch_name: str
    question_count: int
    passing_marks: int


@dataclass
class ResultRow:
    result: Result
    exam_title: str
    student_name: str
    student_email: str
    batch_id: int


@dataclass
class ResultsOverview:
    rows: list[ResultRow]
    count: int
    pass_rate: Optional[float]
    average_percentage: Optional[float]


def _validate_exam_inputs(
    title: str,
    batch_id: Optional[int],
    duration_minutes: Optional[int],
    total_marks: Optional[int],
    passing_marks: Optional[int],
) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not title:
        errors["title"] = "Title is required."
    elif len(title) > TITLE_MAX_LENGTH:
        errors["title"] = f"Title must be at most {TITLE_MAX_LENGTH} characters."
    if batch_id is None:
        errors["batch_id"] = "Batch is required."
    if duration_minutes is None or duration_minutes < 1:
        errors["duration_minutes"] = "Duration must be at least 1 minute."
    if total_marks is None or total_marks < 1:
        errors["total_marks"] = "Total marks must be at least 1."
    if passing_marks is not None:
        if passing_marks < 1:
            errors["passing_marks"] = "Passing marks must be at least 1."
        elif total_marks and passing_marks > total_marks:
            errors["passing_marks"] = "Passing marks cannot exceed total marks."
    return errors


def list_batches(session: Session, actor: Profile) -> list[Batch]:
    require_capability(actor, Role.ADMIN)
    return list(session.exec(select(Batch).order_by(Batch.name)).all())


def create_batch(
    session: Session, actor: Profile, name: str, description: Optional[str] = None
) -> Batch:
    require_capability(actor, Role.ADMIN)
    name_clean = sanitize_plain(name)
    if not name_clean:
        raise ValidationFailed({"name": "Batch name is required."})

    batch = Batch(name=name_clean, description=sanitize_plain(description) or None)
    session.add(batch)
    session.commit()
    session.refresh(batch)
    logger.info("Batch id=%s created by admin id=%s", batch.id, actor.id)
    return batch


def enroll_student(
    session: Session,
    actor: Profile,
    batch_id: int,
    student_id: int,
    access_expiry: Optional[datetime],
) -> BatchStudent:
    """Enroll a student in a batch, or move the expiry of an existing enrollment."""
    require_capability(actor, Role.ADMIN)
    if not session.get(Batch, batch_id):
        raise NotFound("Batch not found")
    student = session.get(Profile, student_id)
    if not student or student.role != Role.STUDENT.value:
        raise NotFound("Student not found")
    if access_expiry is None:
        raise ValidationFailed({"access_expiry": "Access expiry is required."})

    enrollment = session.exec(
        select(BatchStudent).where(
            BatchStudent.batch_id == batch_id, BatchStudent.student_id == student_id
        )
    ).first()
    if enrollment:
        enrollment.access_expiry = access_expiry
    else:
        enrollment = BatchStudent(
            batch_id=batch_id, student_id=student_id, access_expiry=access_expiry
        )
    session.add(enrollment)
    session.commit()
    session.refresh(enrollment)
    logger.info(
        "Student id=%s enrolled in batch id=%s until %s", student_id, batch_id, access_expiry
    )
    return enrollment


def list_exams(session: Session, actor: Profile) -> list[ExamSummary]:
    require_capability(actor, Role.ADMIN)
    exams = session.exec(select(Exam).order_by(Exam.created_at.desc(), Exam.id.desc())).all()
    batches = {b.id: b.name for b in session.exec(select(Batch)).all()}
    summaries = []
    for exam in exams:
        count = len(session.exec(select(Question.id).where(Question.exam_id == exam.id)).all())
        summaries.append(
            ExamSummary(
                exam=exam,
                batch_name=batches.get(exam.batch_id, "-"),
                question_count=count,
                passing_marks=effective_passing_marks(exam),
            )
        )
    return summaries


def create_exam(
    session: Session,
    actor: Profile,
    title: str,
    batch_id: Optional[int],
    duration_minutes: Optional[int] = 60,
    total_marks: Optional[int] = 100,
    passing_marks: Optional[int] = None,
    description: Optional[str] = None,
    is_published: bool = False,
    publish_result: bool = False,
) -> Exam:
    require_capability(actor, Role.ADMIN)
    title_clean = sanitize_plain(title)
    errors = _validate_exam_inputs(title_clean, batch_id, duration_minutes, total_marks, passing_marks)
    if batch_id is not None and not session.get(Batch, batch_id):
        errors["batch_id"] = "Selected batch does not exist."
    if errors:
        raise ValidationFailed(errors)

    exam = Exam(
        batch_id=batch_id,
        title=title_clean,
        description=sanitize_plain(description) or None,
        duration_minutes=duration_minutes,
        total_marks=total_marks,
        passing_marks=passing_marks,
        is_published=is_published,
        publish_result=publish_result,
    )
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Exam id=%s created by admin id=%s", exam.id, actor.id)
    return exam


def update_exam(
    session: Session,
    exam_id: int,
    actor: Profile,
    title: str,
    batch_id: Optional[int],
    duration_minutes: Optional[int],
    total_marks: Optional[int],
    passing_marks: Optional[int] = None,
    description: Optional[str] = None,
) -> Exam:
    require_capability(actor, Role.ADMIN)
    exam = get_exam(session, exam_id)
    title_clean = sanitize_plain(title)
    errors = _validate_exam_inputs(title_clean, batch_id, duration_minutes, total_marks, passing_marks)
    if batch_id is not None and not session.get(Batch, batch_id):
        errors["batch_id"] = "Selected batch does not exist."
    if errors:
        raise ValidationFailed(errors)

    exam.title = title_clean
    exam.batch_id = batch_id
    exam.description = sanitize_plain(description) or None
    exam.duration_minutes = duration_minutes
    exam.total_marks = total_marks
    exam.passing_marks = passing_marks
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def delete_exam(session: Session, exam_id: int, actor: Profile) -> None:
    """Delete an exam together with its questions, attempts and results."""
    require_capability(actor, Role.ADMIN)
    exam = get_exam(session, exam_id)
    session.execute(delete(Result).where(Result.exam_id == exam_id))
    session.execute(delete(ExamAttempt).where(ExamAttempt.exam_id == exam_id))
    session.execute(delete(Question).where(Question.exam_id == exam_id))
    session.delete(exam)
    session.commit()
    logger.info("Exam id=%s deleted by admin id=%s", exam_id, actor.id)


def toggle_published(session: Session, exam_id: int, actor: Profile) -> Exam:
    require_capability(actor, Role.ADMIN)
    exam = get_exam(session, exam_id)
    exam.is_published = not exam.is_published
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def toggle_publish_result(session: Session, exam_id: int, actor: Profile) -> Exam:
    require_capability(actor, Role.ADMIN)
    exam = get_exam(session, exam_id)
    exam.publish_result = not exam.publish_result
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def results_overview(
    session: Session,
    actor: Profile,
    exam_id: Optional[int] = None,
    batch_id: Optional[int] = None,
    since: Optional[datetime] = None,
) -> ResultsOverview:
    """All results with optional filters, plus pass rate and average."""
    require_capability(actor, Role.ADMIN)
    stmt = (
        select(Result, Exam, Profile)
        .where(Result.exam_id == Exam.id, Result.student_id == Profile.id)
        .order_by(Result.created_at.desc(), Result.id.desc())
    )
    if exam_id is not None:
        stmt = stmt.where(Result.exam_id == exam_id)
    if batch_id is not None:
        stmt = stmt.where(Exam.batch_id == batch_id)
    if since is not None:
        stmt = stmt.where(Result.created_at >= since)

    rows = [
        ResultRow(
            result=result,
            exam_title=exam.title,
            student_name=profile.full_name,
            student_email=profile.email,
            batch_id=exam.batch_id,
        )
        for result, exam, profile in session.exec(stmt).all()
    ]

    if not rows:
        return ResultsOverview(rows=[], count=0, pass_rate=None, average_percentage=None)

    passed = sum(1 for row in rows if row.result.percentage >= ADMIN_PASS_PERCENTAGE)
    average = sum(row.result.percentage for row in rows) / len(rows)
    return ResultsOverview(
        rows=rows,
        count=len(rows),
        pass_rate=round(passed * 100 / len(rows)),
        average_percentage=round(average, 1),
    )


def get_exam_for_admin(session: Session, exam_id: int, actor: Profile) -> Exam:
    require_capability(actor, Role.ADMIN)
    exam = session.get(Exam, exam_id)
    if not exam:
        raise NotFound("Exam not found")
    return exam
