"""Shared FastAPI dependencies for database access and authorization."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from vhl_portal.access import (
    DecisionKind,
    SessionState,
    authorize,
    resolve_session,
)
from vhl_portal.database import get_session
from vhl_portal.models import Profile, Role
from vhl_portal.services.timer import AttemptTimers


class SessionPending(Exception):
    """Raised while the session is still resolving; rendered as a placeholder."""


def get_session_state(
    request: Request, session: Session = Depends(get_session)
) -> SessionState:
    """Resolve the session cookie into a SessionState for this request."""
    return resolve_session(request.session, session)


def get_current_profile(
    state: SessionState = Depends(get_session_state),
) -> Optional[Profile]:
    return state.profile


def require_role(required_role: Role):
    """Dependency factory that applies the access decision for a route."""

    def wrapper(state: SessionState = Depends(get_session_state)) -> Profile:
        decision = authorize(required_role, state)
        if decision.kind is DecisionKind.LOADING:
            raise SessionPending()
        if decision.kind is DecisionKind.REDIRECT:
            # Use 303 redirect; main converts it to a RedirectResponse
            raise HTTPException(status_code=303, headers={"Location": decision.location})
        return state.profile

    return wrapper


def get_timers(request: Request) -> AttemptTimers:
    return request.app.state.timers
