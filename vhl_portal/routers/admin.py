"""Admin routes: exam list, exam form, publish toggles and results overview."""

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request
from fastapi import status as http_status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

from vhl_portal.config import TEMPLATES_DIR
from vhl_portal.database import get_session
from vhl_portal.deps import require_role
from vhl_portal.errors import NotFound, ValidationFailed
from vhl_portal.models import Profile, Role
from vhl_portal.services import admin_service
from vhl_portal.utils import parse_optional_int as _to_int

router = APIRouter()
templates = Jinja2Templates(directory=TEMPLATES_DIR)


def _back_to_admin(error: Optional[str] = None) -> RedirectResponse:
    url = "/admin" if not error else f"/admin?error={quote(error)}"
    return RedirectResponse(url=url, status_code=http_status.HTTP_303_SEE_OTHER)


def _exam_form_values(**values) -> dict:
    return {key: ("" if value is None else value) for key, value in values.items()}


@router.get("")
def admin_home(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
    error: Optional[str] = Query(None),
):
    """List all exams with batch, question count and publish state."""
    context = {
        "current_user": current_user,
        "exams": admin_service.list_exams(session, current_user),
        "batches": admin_service.list_batches(session, current_user),
        "form": {},
        "errors": {},
        "error": error,
    }
    return templates.TemplateResponse(request, "admin/exams.html", context)


@router.post("/exams")
def create_exam(
    request: Request,
    title: Optional[str] = Form(None),
    batch_id: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    duration_minutes: Optional[str] = Form(None),
    total_marks: Optional[str] = Form(None),
    passing_marks: Optional[str] = Form(None),
    is_published: Optional[str] = Form(None),
    publish_result: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        admin_service.create_exam(
            session,
            current_user,
            title=title or "",
            batch_id=_to_int(batch_id),
            duration_minutes=_to_int(duration_minutes),
            total_marks=_to_int(total_marks),
            passing_marks=_to_int(passing_marks),
            description=description,
            is_published=bool(is_published),
            publish_result=bool(publish_result),
        )
    except ValidationFailed as exc:
        context = {
            "current_user": current_user,
            "exams": admin_service.list_exams(session, current_user),
            "batches": admin_service.list_batches(session, current_user),
            "form": _exam_form_values(
                title=title,
                batch_id=batch_id,
                description=description,
                duration_minutes=duration_minutes,
                total_marks=total_marks,
                passing_marks=passing_marks,
            ),
            "errors": exc.errors,
            "error": None,
        }
        return templates.TemplateResponse(
            request, "admin/exams.html", context, status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _back_to_admin()


@router.get("/exams/{exam_id}/edit")
def edit_exam_form(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        exam = admin_service.get_exam_for_admin(session, exam_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Exam not found")

    context = {
        "current_user": current_user,
        "exam": exam,
        "batches": admin_service.list_batches(session, current_user),
        "form": _exam_form_values(
            title=exam.title,
            batch_id=exam.batch_id,
            description=exam.description,
            duration_minutes=exam.duration_minutes,
            total_marks=exam.total_marks,
            passing_marks=exam.passing_marks,
        ),
        "errors": {},
    }
    return templates.TemplateResponse(request, "admin/exam_form.html", context)


@router.post("/exams/{exam_id}/edit")
def update_exam(
    exam_id: int,
    request: Request,
    title: Optional[str] = Form(None),
    batch_id: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    duration_minutes: Optional[str] = Form(None),
    total_marks: Optional[str] = Form(None),
    passing_marks: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        admin_service.update_exam(
            session,
            exam_id,
            current_user,
            title=title or "",
            batch_id=_to_int(batch_id),
            duration_minutes=_to_int(duration_minutes),
            total_marks=_to_int(total_marks),
            passing_marks=_to_int(passing_marks),
            description=description,
        )
    except NotFound:
        raise HTTPException(status_code=404, detail="Exam not found")
    except ValidationFailed as exc:
        context = {
            "current_user": current_user,
            "exam": admin_service.get_exam_for_admin(session, exam_id, current_user),
            "batches": admin_service.list_batches(session, current_user),
            "form": _exam_form_values(
                title=title,
                batch_id=batch_id,
                description=description,
                duration_minutes=duration_minutes,
                total_marks=total_marks,
                passing_marks=passing_marks,
            ),
            "errors": exc.errors,
        }
        return templates.TemplateResponse(
            request, "admin/exam_form.html", context, status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _back_to_admin()


@router.post("/exams/{exam_id}/delete")
def delete_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        admin_service.delete_exam(session, exam_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Exam not found")
    return _back_to_admin()


@router.post("/exams/{exam_id}/toggle-publish")
def toggle_publish(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        admin_service.toggle_published(session, exam_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Exam not found")
    return _back_to_admin()


@router.post("/exams/{exam_id}/toggle-results")
def toggle_results(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
):
    try:
        admin_service.toggle_publish_result(session, exam_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Exam not found")
    return _back_to_admin()


@router.get("/results")
def results_overview(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.ADMIN)),
    exam_id: Optional[str] = Query(None),
    batch_id: Optional[str] = Query(None),
):
    """All submitted results with pass rate and average percentage."""
    overview = admin_service.results_overview(
        session,
        current_user,
        exam_id=_to_int(exam_id),
        batch_id=_to_int(batch_id),
    )
    context = {
        "current_user": current_user,
        "overview": overview,
        "exams": admin_service.list_exams(session, current_user),
        "batches": admin_service.list_batches(session, current_user),
        "filters": {"exam_id": exam_id or "", "batch_id": batch_id or ""},
    }
    return templates.TemplateResponse(request, "admin/results.html", context)
