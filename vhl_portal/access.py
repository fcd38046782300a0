"""Role-based access control.

Session resolution turns the cookie into a ``SessionState``; ``authorize`` is a
pure function from (required role, state) to a ``Decision``. Admin is a
superset role: its capability set contains both roles.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import MutableMapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from vhl_portal import identity
from vhl_portal.errors import AccessDenied
from vhl_portal.models import Profile, Role

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
STUDENT_HOME = "/dashboard"
ADMIN_HOME = "/admin"

CAPABILITIES: dict[Role, frozenset] = {
    Role.ADMIN: frozenset({Role.ADMIN, Role.STUDENT}),
    Role.STUDENT: frozenset({Role.STUDENT}),
}


class SessionStatus(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus = SessionStatus.LOADING
    profile: Optional[Profile] = None

    @classmethod
    def unauthenticated(cls) -> "SessionState":
        return cls(SessionStatus.UNAUTHENTICATED)

    @classmethod
    def authenticated(cls, profile: Profile) -> "SessionState":
        return cls(SessionStatus.AUTHENTICATED, profile)


class DecisionKind(str, Enum):
    ALLOW = "allow"
    LOADING = "loading"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    location: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.kind is DecisionKind.ALLOW


def role_of(profile: Profile) -> Optional[Role]:
    try:
        return Role(profile.role)
    except ValueError:
        return None


def capabilities(profile: Optional[Profile]) -> frozenset:
    role = role_of(profile) if profile is not None else None
    return CAPABILITIES.get(role, frozenset())


def home_path(profile: Profile) -> str:
    return ADMIN_HOME if role_of(profile) is Role.ADMIN else STUDENT_HOME


def resolve_session(session_data: MutableMapping, db: Session) -> SessionState:
    """Resolve the signed cookie session to a profile, failing closed."""
    user_id = identity.current_user_id(session_data)
    if user_id is None:
        return SessionState.unauthenticated()

    try:
        profile = db.get(Profile, user_id)
    except SQLAlchemyError:
        logger.exception("Profile lookup failed for user id=%s", user_id)
        profile = None

    if profile is None or role_of(profile) is None:
        # Clear any stale session
        session_data.clear()
        return SessionState.unauthenticated()
    return SessionState.authenticated(profile)


def authorize(required_role: Role, state: SessionState) -> Decision:
    if state.status is SessionStatus.LOADING:
        return Decision(DecisionKind.LOADING)
    if state.status is SessionStatus.UNAUTHENTICATED or state.profile is None:
        return Decision(DecisionKind.REDIRECT, LOGIN_PATH)
    if required_role in capabilities(state.profile):
        return Decision(DecisionKind.ALLOW)
    # Only a student on an admin route can land here
    return Decision(DecisionKind.REDIRECT, home_path(state.profile))


def require_capability(profile: Optional[Profile], role: Role) -> Profile:
    """Service-layer guard; raises instead of redirecting."""
    if profile is None or role not in capabilities(profile):
        raise AccessDenied("You do not have permission to perform this action.")
    return profile


def is_admin(profile: Optional[Profile]) -> bool:
    return profile is not None and role_of(profile) is Role.ADMIN
