"""Sign-in, sign-up and sign-out routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

from vhl_portal import identity
from vhl_portal.access import LOGIN_PATH, STUDENT_HOME, home_path
from vhl_portal.config import TEMPLATES_DIR
from vhl_portal.database import get_session
from vhl_portal.deps import get_current_profile
from vhl_portal.errors import ValidationFailed
from vhl_portal.models import Profile

router = APIRouter()
templates = Jinja2Templates(directory=TEMPLATES_DIR)


def _login_page(request: Request, status_code: int = 200, **extra):
    context = {"form": {}, "error": None, "signup_form": {}, "signup_errors": {}}
    context.update(extra)
    return templates.TemplateResponse(request, "auth/login.html", context, status_code=status_code)


@router.get("/login")
def login_form(request: Request, current_user: Optional[Profile] = Depends(get_current_profile)):
    if current_user:
        # Already logged in: send to the dashboard for the role
        return RedirectResponse(url=home_path(current_user), status_code=status.HTTP_303_SEE_OTHER)
    return _login_page(request)


@router.post("/login")
def login(
    request: Request,
    email: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    session: Session = Depends(get_session),
):
    form_data = {"email": email or ""}
    if not email or not password:
        return _login_page(
            request,
            status.HTTP_400_BAD_REQUEST,
            form=form_data,
            error="Email and password are required.",
        )

    user_id = identity.sign_in(session, email, password)
    profile = session.get(Profile, user_id) if user_id is not None else None
    if profile is None:
        return _login_page(
            request,
            status.HTTP_400_BAD_REQUEST,
            form=form_data,
            error="Invalid email or password.",
        )

    identity.start_session(request.session, profile.id)
    return RedirectResponse(url=home_path(profile), status_code=status.HTTP_303_SEE_OTHER)


@router.post("/signup")
def signup(
    request: Request,
    full_name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    session: Session = Depends(get_session),
):
    try:
        profile = identity.sign_up(session, email or "", password or "", full_name or "", phone)
    except ValidationFailed as exc:
        return _login_page(
            request,
            status.HTTP_400_BAD_REQUEST,
            signup_form={"full_name": full_name or "", "email": email or "", "phone": phone or ""},
            signup_errors=exc.errors,
        )

    identity.start_session(request.session, profile.id)
    return RedirectResponse(url=STUDENT_HOME, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/logout")
def logout(request: Request):
    identity.sign_out(request.session)
    return RedirectResponse(url=LOGIN_PATH, status_code=status.HTTP_303_SEE_OTHER)
