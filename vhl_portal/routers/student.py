"""Student-facing routes: dashboard with exams and published results."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

from vhl_portal.config import TEMPLATES_DIR
from vhl_portal.database import get_session
from vhl_portal.deps import require_role
from vhl_portal.errors import NotFound
from vhl_portal.models import Profile, Role
from vhl_portal.services import exam_service
from vhl_portal.utils import grade_letter

router = APIRouter()
templates = Jinja2Templates(directory=TEMPLATES_DIR)
templates.env.globals["grade_letter"] = grade_letter


@router.get("/dashboard")
def dashboard(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.STUDENT)),
    error: Optional[str] = Query(None),
    message: Optional[str] = Query(None),
):
    """Exams of the student's active batches and the results released so far."""
    exams = exam_service.list_student_exams(session, current_user)
    results = exam_service.list_student_results(session, current_user)
    context = {
        "current_user": current_user,
        "exams": exams,
        "results": results,
        "error": error,
        "message": message,
    }
    return templates.TemplateResponse(request, "student/dashboard.html", context)


@router.get("/results/{result_id}")
def result_detail(
    result_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.STUDENT)),
):
    try:
        detail = exam_service.view_result(session, result_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Result not found")

    context = {"current_user": current_user, "detail": detail}
    return templates.TemplateResponse(request, "student/result.html", context)
