"""Exam attempt lifecycle: start/resume, answer capture, submission, scoring.

Submission is exactly-once: the attempt row is flipped with a conditional
``UPDATE ... WHERE is_submitted = false`` and only the caller that wins that
write scores the attempt and inserts its Result, in the same transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from vhl_portal.access import require_capability
from vhl_portal.config import PASSING_RATIO, STUDENT_PASS_PERCENTAGE
from vhl_portal.errors import (
    AttemptClosed,
    ExamUnavailable,
    NotFound,
    ValidationFailed,
)
from vhl_portal.models import (
    BatchStudent,
    Exam,
    ExamAttempt,
    OptionLetter,
    Profile,
    Question,
    Result,
    Role,
)
from vhl_portal.utils import grade_letter, utcnow

logger = logging.getLogger(__name__)

Answers = dict[int, OptionLetter]


@dataclass(frozen=True)
class Score:
    score: int
    total_marks: int
    percentage: float


@dataclass
class AttemptView:
    attempt: ExamAttempt
    exam: Exam
    questions: list[Question]
    answers: Answers
    deadline: datetime
    resumed: bool = False

    def remaining_seconds(self, now: Optional[datetime] = None) -> int:
        return max(0, int((self.deadline - (now or utcnow())).total_seconds()))


@dataclass
class QuestionReview:
    number: int
    question: Question
    selected: Optional[str]
    is_correct: bool


@dataclass
class ResultDetail:
    result: Result
    exam: Exam
    review: list[QuestionReview] = field(default_factory=list)

    @property
    def grade(self) -> str:
        return grade_letter(self.result.percentage)

    @property
    def passed(self) -> bool:
        return self.result.percentage >= STUDENT_PASS_PERCENTAGE


@dataclass
class ExamListing:
    exam: Exam
    status: str  # not_started | in_progress | completed
    attempt: Optional[ExamAttempt] = None


@dataclass
class StudentExams:
    access_expired: bool
    items: list[ExamListing]


# --- answers mapping -----------------------------------------------------


def parse_option(value: Union[str, OptionLetter, None]) -> OptionLetter:
    try:
        return OptionLetter(str(getattr(value, "value", value) or "").strip().upper())
    except ValueError:
        raise ValidationFailed({"option": "Option must be one of: A, B, C, or D."})


def parse_answers(raw: Optional[Mapping]) -> Answers:
    """Convert the stored JSON object into a typed mapping."""
    answers: Answers = {}
    for key, value in (raw or {}).items():
        try:
            answers[int(key)] = OptionLetter(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed stored answer %r=%r", key, value)
    return answers


def dump_answers(answers: Mapping[int, OptionLetter]) -> dict[str, str]:
    return {str(qid): OptionLetter(letter).value for qid, letter in answers.items()}


# --- pure helpers --------------------------------------------------------


def score_attempt(
    answers: Mapping[int, Union[OptionLetter, str]], questions: Iterable[Question]
) -> Score:
    """Sum marks of correctly answered questions; no negative marking."""
    score = 0
    total = 0
    for question in questions:
        total += question.marks
        selected = answers.get(question.id)
        if selected is None:
            continue
        if getattr(selected, "value", selected) == question.correct_option:
            score += question.marks

    percentage = round(score * 100 / total, 2) if total > 0 else 0.0
    return Score(score=score, total_marks=total, percentage=percentage)


def deadline_for(attempt: ExamAttempt, exam: Exam) -> datetime:
    """Deadline derives from the persisted started_at, so reloads add no time."""
    return attempt.started_at + timedelta(minutes=exam.duration_minutes)


def effective_passing_marks(exam: Exam) -> int:
    if exam.passing_marks:
        return exam.passing_marks
    return int(exam.total_marks * PASSING_RATIO)


# --- queries -------------------------------------------------------------


def get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if not exam:
        raise NotFound("Exam not found")
    return exam


def list_exam_questions(session: Session, exam_id: int) -> list[Question]:
    return list(
        session.exec(
            select(Question)
            .where(Question.exam_id == exam_id)
            .order_by(Question.order_index, Question.id)
        ).all()
    )


def _find_attempt(session: Session, exam_id: int, student_id: int) -> Optional[ExamAttempt]:
    return session.exec(
        select(ExamAttempt).where(
            ExamAttempt.exam_id == exam_id, ExamAttempt.student_id == student_id
        )
    ).first()


def _result_for(session: Session, attempt_id: int) -> Optional[Result]:
    return session.exec(select(Result).where(Result.attempt_id == attempt_id)).first()


def active_enrollment(
    session: Session, student_id: int, batch_id: int, now: Optional[datetime] = None
) -> Optional[BatchStudent]:
    """Enrollment in the batch whose access has not expired yet."""
    now = now or utcnow()
    return session.exec(
        select(BatchStudent).where(
            BatchStudent.student_id == student_id,
            BatchStudent.batch_id == batch_id,
            BatchStudent.access_expiry > now,
        )
    ).first()


def _owned_attempt(session: Session, attempt_id: int, student: Profile) -> ExamAttempt:
    require_capability(student, Role.STUDENT)
    attempt = session.get(ExamAttempt, attempt_id)
    if not attempt or attempt.student_id != student.id:
        raise NotFound("Attempt not found")
    return attempt


def get_student_attempt(session: Session, exam_id: int, student: Profile) -> ExamAttempt:
    require_capability(student, Role.STUDENT)
    attempt = _find_attempt(session, exam_id, student.id)
    if attempt is None:
        raise NotFound("Attempt not found")
    return attempt


def _view(session: Session, attempt: ExamAttempt, exam: Exam, resumed: bool) -> AttemptView:
    return AttemptView(
        attempt=attempt,
        exam=exam,
        questions=list_exam_questions(session, exam.id),
        answers=parse_answers(attempt.answers),
        deadline=deadline_for(attempt, exam),
        resumed=resumed,
    )


# --- operations ----------------------------------------------------------


def start_attempt(
    session: Session, exam_id: int, student: Profile, now: Optional[datetime] = None
) -> AttemptView:
    """Create the student's attempt, or resume the unsubmitted one."""
    require_capability(student, Role.STUDENT)
    now = now or utcnow()
    exam = get_exam(session, exam_id)

    if not exam.is_published:
        raise ExamUnavailable("This exam is not available.")
    if active_enrollment(session, student.id, exam.batch_id, now) is None:
        raise ExamUnavailable("Your access to this batch has expired or you are not enrolled.")

    attempt = _find_attempt(session, exam_id, student.id)
    if attempt:
        if attempt.is_submitted:
            raise AttemptClosed("You have already submitted this exam.")
        return _view(session, attempt, exam, resumed=True)

    attempt = ExamAttempt(
        exam_id=exam_id,
        student_id=student.id,
        answers={},
        is_submitted=False,
        started_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(attempt)
    try:
        session.commit()
    except IntegrityError:
        # Another request created it first: resume that one
        session.rollback()
        attempt = _find_attempt(session, exam_id, student.id)
        if attempt is None:
            raise
        if attempt.is_submitted:
            raise AttemptClosed("You have already submitted this exam.")
        return _view(session, attempt, exam, resumed=True)

    session.refresh(attempt)
    logger.info("Attempt id=%s started for exam id=%s student id=%s", attempt.id, exam_id, student.id)
    return _view(session, attempt, exam, resumed=False)


def record_answer(
    session: Session,
    attempt_id: int,
    question_id: int,
    option: Union[str, OptionLetter],
    student: Profile,
    now: Optional[datetime] = None,
) -> Answers:
    """Upsert one answer on an in-progress attempt and return all answers."""
    letter = parse_option(option)
    now = now or utcnow()
    attempt = _owned_attempt(session, attempt_id, student)
    if attempt.is_submitted:
        raise AttemptClosed("This exam has already been submitted.")

    question = session.get(Question, question_id)
    if not question or question.exam_id != attempt.exam_id:
        raise NotFound("Question not found")

    exam = get_exam(session, attempt.exam_id)
    if now >= deadline_for(attempt, exam):
        _finalize(session, attempt.id, now)
        raise AttemptClosed("Time is up. Your exam has been submitted.")

    answers = parse_answers(attempt.answers)
    answers[question_id] = letter
    outcome = session.execute(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt.id, ExamAttempt.is_submitted == False)  # noqa: E712
        .values(answers=dump_answers(answers), updated_at=now)
    )
    if outcome.rowcount != 1:
        session.rollback()
        raise AttemptClosed("This exam has already been submitted.")
    session.commit()
    return answers


def submit_attempt(
    session: Session, attempt_id: int, student: Profile, now: Optional[datetime] = None
) -> Optional[Result]:
    """Submit and score an attempt; repeated calls return the existing result."""
    attempt = _owned_attempt(session, attempt_id, student)
    if attempt.is_submitted:
        logger.info("Duplicate submit ignored for attempt id=%s", attempt_id)
        return _result_for(session, attempt_id)
    return _finalize(session, attempt_id, now or utcnow())


def expire_if_due(
    session: Session, attempt_id: int, now: Optional[datetime] = None
) -> Optional[Result]:
    """Submit an in-progress attempt whose deadline has passed.

    Returns the new Result, or None when nothing was due (not found, already
    submitted, or still within time).
    """
    now = now or utcnow()
    attempt = session.get(ExamAttempt, attempt_id)
    if not attempt or attempt.is_submitted:
        return None
    exam = session.get(Exam, attempt.exam_id)
    if exam is None or now < deadline_for(attempt, exam):
        return None
    return _finalize(session, attempt_id, now)


def _finalize(session: Session, attempt_id: int, now: datetime) -> Optional[Result]:
    outcome = session.execute(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt_id, ExamAttempt.is_submitted == False)  # noqa: E712
        .values(is_submitted=True, submitted_at=now, updated_at=now)
    )
    if outcome.rowcount != 1:
        # Lost the race against another submission
        session.rollback()
        return _result_for(session, attempt_id)

    # Score what the row holds now that no other writer can change it
    attempt = session.get(ExamAttempt, attempt_id)
    session.refresh(attempt)
    questions = list_exam_questions(session, attempt.exam_id)
    scored = score_attempt(parse_answers(attempt.answers), questions)

    result = Result(
        attempt_id=attempt_id,
        exam_id=attempt.exam_id,
        student_id=attempt.student_id,
        score=scored.score,
        total_marks=scored.total_marks,
        percentage=scored.percentage,
        created_at=now,
    )
    session.add(result)
    try:
        session.commit()
    except SQLAlchemyError:
        # Attempt flag and result roll back together
        session.rollback()
        logger.exception("Could not store result for attempt id=%s", attempt_id)
        raise

    session.refresh(result)
    logger.info(
        "Attempt id=%s submitted: %s/%s (%.2f%%)",
        attempt_id,
        result.score,
        result.total_marks,
        result.percentage,
    )
    return result


def view_result(session: Session, result_id: int, student: Profile) -> ResultDetail:
    """Return a result to its owner once the exam's results are published."""
    require_capability(student, Role.STUDENT)
    result = session.get(Result, result_id)
    # Same error for missing, foreign and unpublished results
    if not result or result.student_id != student.id:
        raise NotFound("Result not found")
    exam = session.get(Exam, result.exam_id)
    if not exam or not exam.publish_result:
        raise NotFound("Result not found")

    attempt = session.get(ExamAttempt, result.attempt_id)
    answers = parse_answers(attempt.answers if attempt else {})
    review = []
    for number, question in enumerate(list_exam_questions(session, exam.id), start=1):
        selected = answers.get(question.id)
        review.append(
            QuestionReview(
                number=number,
                question=question,
                selected=selected.value if selected else None,
                is_correct=selected is not None and selected.value == question.correct_option,
            )
        )
    return ResultDetail(result=result, exam=exam, review=review)


def list_student_results(session: Session, student: Profile) -> list[tuple[Result, Exam]]:
    """Results whose exam has publish_result switched on, newest first."""
    require_capability(student, Role.STUDENT)
    rows = session.exec(
        select(Result, Exam)
        .where(
            Result.exam_id == Exam.id,
            Result.student_id == student.id,
            Exam.publish_result == True,  # noqa: E712
        )
        .order_by(Result.created_at.desc(), Result.id.desc())
    ).all()
    return [(result, exam) for result, exam in rows]


def list_student_exams(
    session: Session, student: Profile, now: Optional[datetime] = None
) -> StudentExams:
    """Published exams of the student's active batches with attempt status."""
    require_capability(student, Role.STUDENT)
    now = now or utcnow()
    enrollments = session.exec(
        select(BatchStudent).where(BatchStudent.student_id == student.id)
    ).all()
    active_batches = [e.batch_id for e in enrollments if e.access_expiry > now]
    access_expired = bool(enrollments) and not active_batches

    if not active_batches:
        return StudentExams(access_expired=access_expired, items=[])

    exams = session.exec(
        select(Exam)
        .where(Exam.batch_id.in_(active_batches), Exam.is_published == True)  # noqa: E712
        .order_by(Exam.created_at.desc(), Exam.id.desc())
    ).all()
    attempts = {
        a.exam_id: a
        for a in session.exec(
            select(ExamAttempt).where(ExamAttempt.student_id == student.id)
        ).all()
    }

    items = []
    for exam in exams:
        attempt = attempts.get(exam.id)
        if attempt is None:
            status = "not_started"
        elif attempt.is_submitted:
            status = "completed"
        else:
            status = "in_progress"
        items.append(ExamListing(exam=exam, status=status, attempt=attempt))
    return StudentExams(access_expired=False, items=items)


def preview_exam(session: Session, exam_id: int, viewer: Profile) -> AttemptView:
    """Read-only view of an exam for admins; no attempt row is created."""
    require_capability(viewer, Role.ADMIN)
    exam = get_exam(session, exam_id)
    now = utcnow()
    placeholder = ExamAttempt(exam_id=exam.id, student_id=viewer.id, started_at=now)
    return AttemptView(
        attempt=placeholder,
        exam=exam,
        questions=list_exam_questions(session, exam.id),
        answers={},
        deadline=deadline_for(placeholder, exam),
    )
