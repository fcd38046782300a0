"""Question bank management for an exam (admin only).

order_index is unique per exam. Swaps and renumbering run inside a single
transaction and go through negative placeholder values first, so the
uniqueness constraint holds after every flush.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from vhl_portal.access import require_capability
from vhl_portal.errors import NotFound, ValidationFailed
from vhl_portal.models import OptionLetter, Profile, Question, Role
from vhl_portal.services.exam_service import get_exam, list_exam_questions
from vhl_portal.utils import sanitize_plain, sanitize_question_text, utcnow

logger = logging.getLogger(__name__)

# Validation constraints
QUESTION_MAX_LENGTH = 5000
OPTION_MAX_LENGTH = 1000
MAX_MARKS = 100
DIRECTIONS = ("up", "down")


def _validate_question_inputs(
    question_text: str,
    options: dict[str, str],
    correct_option: str,
    marks: Optional[int],
) -> dict[str, str]:
    """Validate question inputs and return an error dictionary."""
    errors: dict[str, str] = {}

    if not question_text:
        errors["question"] = "Question text is required."
    elif len(question_text) > QUESTION_MAX_LENGTH:
        errors["question"] = f"Question text must be at most {QUESTION_MAX_LENGTH} characters."

    for field_name, value in options.items():
        letter = field_name[-1].upper()
        if not value:
            errors[field_name] = "All options must be provided and non-empty."
        elif len(value) > OPTION_MAX_LENGTH:
            errors[field_name] = f"Option {letter} must be at most {OPTION_MAX_LENGTH} characters."

    # Only check duplicates if basic validation passed
    if not errors:
        lowered = [value.lower() for value in options.values()]
        if len(lowered) != len(set(lowered)):
            errors["options"] = "All options must be unique."

    if not correct_option:
        errors["correct_option"] = "Correct option must be specified."
    elif correct_option not in {letter.value for letter in OptionLetter}:
        errors["correct_option"] = "Correct option must be one of: A, B, C, or D."

    if marks is None or marks < 1:
        errors["marks"] = "Marks must be at least 1."
    elif marks > MAX_MARKS:
        errors["marks"] = f"Marks cannot exceed {MAX_MARKS}."

    return errors


def _clean(
    question: str,
    option_a: str,
    option_b: str,
    option_c: str,
    option_d: str,
    correct_option: str,
    marks: Optional[int],
) -> dict:
    data = {
        "question": sanitize_question_text(question or ""),
        "option_a": sanitize_plain(option_a),
        "option_b": sanitize_plain(option_b),
        "option_c": sanitize_plain(option_c),
        "option_d": sanitize_plain(option_d),
        "correct_option": (correct_option or "").strip().upper(),
        "marks": marks,
    }
    errors = _validate_question_inputs(
        data["question"],
        {k: data[k] for k in ("option_a", "option_b", "option_c", "option_d")},
        data["correct_option"],
        marks,
    )
    if errors:
        raise ValidationFailed(errors)
    return data


def _has_gaps(questions: list[Question]) -> bool:
    return [q.order_index for q in questions] != list(range(len(questions)))


def repair_order(session: Session, exam_id: int) -> list[Question]:
    """Renumber an exam's questions to 0..n-1, keeping their relative order."""
    questions = list_exam_questions(session, exam_id)
    if not _has_gaps(questions):
        return questions

    logger.warning("Repairing question order for exam id=%s", exam_id)
    for position, question in enumerate(questions):
        question.order_index = -(position + 1)
        session.add(question)
    session.flush()
    for position, question in enumerate(questions):
        question.order_index = position
        session.add(question)
    session.commit()
    return list_exam_questions(session, exam_id)


def list_questions(session: Session, exam_id: int, actor: Profile) -> list[Question]:
    require_capability(actor, Role.ADMIN)
    get_exam(session, exam_id)
    return repair_order(session, exam_id)


def _find_question(session: Session, exam_id: int, question_id: int) -> Question:
    question = session.get(Question, question_id)
    if not question or question.exam_id != exam_id:
        raise NotFound("Question not found")
    return question


def get_question(session: Session, exam_id: int, question_id: int, actor: Profile) -> Question:
    require_capability(actor, Role.ADMIN)
    return _find_question(session, exam_id, question_id)


def add_question(
    session: Session,
    exam_id: int,
    actor: Profile,
    question: str,
    option_a: str,
    option_b: str,
    option_c: str,
    option_d: str,
    correct_option: str,
    marks: Optional[int] = 1,
) -> Question:
    require_capability(actor, Role.ADMIN)
    get_exam(session, exam_id)
    data = _clean(question, option_a, option_b, option_c, option_d, correct_option, marks)

    existing = repair_order(session, exam_id)
    new = Question(exam_id=exam_id, order_index=len(existing), **data)
    session.add(new)
    session.commit()
    session.refresh(new)
    logger.info("Question id=%s added to exam id=%s", new.id, exam_id)
    return new


def edit_question(
    session: Session,
    exam_id: int,
    question_id: int,
    actor: Profile,
    question: str,
    option_a: str,
    option_b: str,
    option_c: str,
    option_d: str,
    correct_option: str,
    marks: Optional[int] = 1,
) -> Question:
    require_capability(actor, Role.ADMIN)
    target = _find_question(session, exam_id, question_id)
    data = _clean(question, option_a, option_b, option_c, option_d, correct_option, marks)

    for key, value in data.items():
        setattr(target, key, value)
    target.updated_at = utcnow()
    session.add(target)
    session.commit()
    session.refresh(target)
    return target


def delete_question(session: Session, exam_id: int, question_id: int, actor: Profile) -> None:
    require_capability(actor, Role.ADMIN)
    target = _find_question(session, exam_id, question_id)
    session.delete(target)
    session.commit()
    repair_order(session, exam_id)


def move_question(
    session: Session, exam_id: int, question_id: int, direction: str, actor: Profile
) -> list[Question]:
    """Swap a question's order_index with its neighbour in one transaction."""
    require_capability(actor, Role.ADMIN)
    if direction not in DIRECTIONS:
        raise ValidationFailed({"direction": "Direction must be 'up' or 'down'."})

    questions = repair_order(session, exam_id)
    positions = {q.id: i for i, q in enumerate(questions)}
    if question_id not in positions:
        raise NotFound("Question not found")

    current_pos = positions[question_id]
    target_pos = current_pos - 1 if direction == "up" else current_pos + 1
    if target_pos < 0 or target_pos >= len(questions):
        return questions

    current = questions[current_pos]
    target = questions[target_pos]
    current_index, target_index = current.order_index, target.order_index
    try:
        current.order_index = -1
        session.add(current)
        session.flush()
        target.order_index = current_index
        session.add(target)
        session.flush()
        current.order_index = target_index
        session.add(current)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Reordering failed for question id=%s", question_id)
        raise
    return list_exam_questions(session, exam_id)
