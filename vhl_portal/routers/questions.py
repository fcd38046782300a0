"""Question management routes for one exam (admin only)."""

from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi import status as http_status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

from vhl_portal.config import TEMPLATES_DIR
from vhl_portal.database import get_session
from vhl_portal.deps import require_role
from vhl_portal.errors import NotFound, ValidationFailed
from vhl_portal.models import Profile, Role
from vhl_portal.services import admin_service, question_service
from vhl_portal.utils import parse_optional_int as _to_int

router = APIRouter()
templates = Jinja2Templates(directory=TEMPLATES_DIR)


def _to_question_list(exam_id: int) -> RedirectResponse:
    return RedirectResponse(
        url=f"/admin/questions/{exam_id}", status_code=http_status.HTTP_303_SEE_OTHER
    )


def _question_page(
    request: Request,
    session: Session,
    current_user: Profile,
    exam_id: int,
    form: Optional[dict] = None,
    errors: Optional[dict] = None,
    editing=None,
    status_code: int = 200,
):
    try:
        exam = admin_service.get_exam_for_admin(session, exam_id, current_user)
        questions = question_service.list_questions(session, exam_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Exam not found")

    context = {
        "current_user": current_user,
        "exam": exam,
        "questions": questions,
        "form": form or {},
        "errors": errors or {},
        "editing": editing,
    }
    return templates.TemplateResponse(
        request, "admin/questions.html", context, status_code=status_code
    )


@router.get("/{exam_id}")
def list_questions(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    """Questions of an exam in display order, with the add form."""
    return _question_page(request, session, current_user, exam_id)


@router.post("/{exam_id}")
def create_question(
    exam_id: int,
    request: Request,
    question: Optional[str] = Form(None),
    option_a: Optional[str] = Form(None),
    option_b: Optional[str] = Form(None),
    option_c: Optional[str] = Form(None),
    option_d: Optional[str] = Form(None),
    correct_option: Optional[str] = Form(None),
    marks: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    form = {
        "question": question or "",
        "option_a": option_a or "",
        "option_b": option_b or "",
        "option_c": option_c or "",
        "option_d": option_d or "",
        "correct_option": correct_option or "",
        "marks": marks or "",
    }
    try:
        question_service.add_question(
            session,
            exam_id,
            current_user,
            question=form["question"],
            option_a=form["option_a"],
            option_b=form["option_b"],
            option_c=form["option_c"],
            option_d=form["option_d"],
            correct_option=form["correct_option"],
            marks=_to_int(marks),
        )
    except NotFound:
        raise HTTPException(status_code=404, detail="Exam not found")
    except ValidationFailed as exc:
        return _question_page(
            request,
            session,
            current_user,
            exam_id,
            form=form,
            errors=exc.errors,
            status_code=http_status.HTTP_400_BAD_REQUEST,
        )
    return _to_question_list(exam_id)


@router.get("/{exam_id}/{question_id}/edit")
def edit_question_form(
    exam_id: int,
    question_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        target = question_service.get_question(session, exam_id, question_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Question not found")

    form = {
        "question": target.question,
        "option_a": target.option_a,
        "option_b": target.option_b,
        "option_c": target.option_c,
        "option_d": target.option_d,
        "correct_option": target.correct_option,
        "marks": target.marks,
    }
    return _question_page(request, session, current_user, exam_id, form=form, editing=target)


@router.post("/{exam_id}/{question_id}/edit")
def update_question(
    exam_id: int,
    question_id: int,
    request: Request,
    question: Optional[str] = Form(None),
    option_a: Optional[str] = Form(None),
    option_b: Optional[str] = Form(None),
    option_c: Optional[str] = Form(None),
    option_d: Optional[str] = Form(None),
    correct_option: Optional[str] = Form(None),
    marks: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    form = {
        "question": question or "",
        "option_a": option_a or "",
        "option_b": option_b or "",
        "option_c": option_c or "",
        "option_d": option_d or "",
        "correct_option": correct_option or "",
        "marks": marks or "",
    }
    try:
        question_service.edit_question(
            session,
            exam_id,
            question_id,
            current_user,
            question=form["question"],
            option_a=form["option_a"],
            option_b=form["option_b"],
            option_c=form["option_c"],
            option_d=form["option_d"],
            correct_option=form["correct_option"],
            marks=_to_int(marks),
        )
    except NotFound:
        raise HTTPException(status_code=404, detail="Question not found")
    except ValidationFailed as exc:
        editing = question_service.get_question(session, exam_id, question_id, current_user)
        return _question_page(
            request,
            session,
            current_user,
            exam_id,
            form=form,
            errors=exc.errors,
            editing=editing,
            status_code=http_status.HTTP_400_BAD_REQUEST,
        )
    return _to_question_list(exam_id)


@router.post("/{exam_id}/{question_id}/delete")
def delete_question(
    exam_id: int,
    question_id: int,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        question_service.delete_question(session, exam_id, question_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Question not found")
    return _to_question_list(exam_id)


@router.post("/{exam_id}/{question_id}/move")
def move_question(
    exam_id: int,
    question_id: int,
    direction: str = Form(...),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        question_service.move_question(session, exam_id, question_id, direction, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Question not found")
    except ValidationFailed as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return _to_question_list(exam_id)
