"""Exam taking routes: attempt page with countdown, answer saves, submission.

The page carries a client-side countdown derived from the server deadline;
the server keeps its own timer per attempt and re-checks the deadline on every
request, so neither reloads nor a closed tab extend the time.
"""

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from vhl_portal.access import STUDENT_HOME, is_admin
from vhl_portal.config import TEMPLATES_DIR
from vhl_portal.database import get_session
from vhl_portal.deps import get_timers, require_role
from vhl_portal.errors import AttemptClosed, ExamUnavailable, NotFound, PortalError
from vhl_portal.models import Exam, OptionLetter, Profile, Role
from vhl_portal.services import exam_service
from vhl_portal.services.timer import AttemptTimers
from vhl_portal.utils import format_seconds, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=TEMPLATES_DIR)
templates.env.filters["countdown"] = format_seconds


class AnswerIn(BaseModel):
    question_id: int
    option: OptionLetter


def _to_dashboard(error: Optional[str] = None, message: Optional[str] = None) -> RedirectResponse:
    if error:
        url = f"{STUDENT_HOME}?error={quote(error)}"
    elif message:
        url = f"{STUDENT_HOME}?message={quote(message)}"
    else:
        url = STUDENT_HOME
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


def _wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("accept", "")


@router.get("/exam/{exam_id}")
async def exam_attempt_page(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.STUDENT)),
    timers: AttemptTimers = Depends(get_timers),
    error: Optional[str] = Query(None),
):
    """Start or resume the student's attempt and render it with the countdown."""
    if is_admin(current_user):
        try:
            view = await run_in_threadpool(
                exam_service.preview_exam, session, exam_id, current_user
            )
        except NotFound:
            raise HTTPException(status_code=404, detail="Exam not found")
        context = {
            "current_user": current_user,
            "view": view,
            "preview": True,
            "remaining_seconds": view.remaining_seconds(),
        }
        return templates.TemplateResponse(request, "student/exam_attempt.html", context)

    try:
        view = await run_in_threadpool(exam_service.start_attempt, session, exam_id, current_user)
    except NotFound:
        raise HTTPException(status_code=404, detail="Exam not found")
    except (ExamUnavailable, AttemptClosed) as exc:
        return _to_dashboard(error=exc.message)

    now = utcnow()
    if now >= view.deadline:
        timers.cancel(view.attempt.id)
        await run_in_threadpool(exam_service.expire_if_due, session, view.attempt.id, now)
        return _to_dashboard(error="Time is up. Your exam has been submitted.")

    timers.schedule(view.attempt.id, view.deadline)
    context = {
        "current_user": current_user,
        "view": view,
        "preview": False,
        "error": error,
        "remaining_seconds": view.remaining_seconds(now),
    }
    return templates.TemplateResponse(request, "student/exam_attempt.html", context)


@router.post("/exam/{exam_id}/answer")
async def save_answer(
    exam_id: int,
    payload: AnswerIn = Body(...),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.STUDENT)),
    timers: AttemptTimers = Depends(get_timers),
):
    """Record one answer (JSON); the client keeps its own copy for display."""
    try:
        attempt = await run_in_threadpool(
            exam_service.get_student_attempt, session, exam_id, current_user
        )
    except NotFound as exc:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
    attempt_id = attempt.id

    try:
        answers = await run_in_threadpool(
            exam_service.record_answer,
            session,
            attempt_id,
            payload.question_id,
            payload.option,
            current_user,
        )
    except AttemptClosed as exc:
        timers.cancel(attempt_id)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
    except PortalError as exc:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
    except SQLAlchemyError:
        logger.exception("Saving answer failed for exam id=%s", exam_id)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Failed to save your answer. Please try again."},
        )

    return {"status": "saved", "answers": exam_service.dump_answers(answers)}


@router.post("/exam/{exam_id}/submit")
async def submit_exam(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_role(Role.STUDENT)),
    timers: AttemptTimers = Depends(get_timers),
):
    """Manual submission, also posted by the page when the countdown hits zero."""
    wants_json = _wants_json(request)
    try:
        attempt = await run_in_threadpool(
            exam_service.get_student_attempt, session, exam_id, current_user
        )
        attempt_id = attempt.id
        result = await run_in_threadpool(
            exam_service.submit_attempt, session, attempt_id, current_user
        )
    except PortalError as exc:
        if wants_json:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
        return _to_dashboard(error=exc.message)
    except SQLAlchemyError:
        logger.exception("Submitting exam id=%s failed", exam_id)
        error = "Failed to submit exam. Please try again."
        if wants_json:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": error})
        return RedirectResponse(
            url=f"/exam/{exam_id}?error={quote(error)}", status_code=status.HTTP_303_SEE_OTHER
        )

    timers.cancel(attempt_id)
    exam = await run_in_threadpool(session.get, Exam, exam_id)
    visible = result is not None and exam is not None and exam.publish_result

    if wants_json:
        content = {"status": "submitted", "result_id": result.id if result else None}
        if visible:
            content.update(
                score=result.score,
                total_marks=result.total_marks,
                percentage=result.percentage,
            )
        return content

    if visible:
        return RedirectResponse(url=f"/results/{result.id}", status_code=status.HTTP_303_SEE_OTHER)
    return _to_dashboard(message="Exam submitted. Results will appear once they are published.")
