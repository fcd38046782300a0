"""Access decisions for every (session state, required role) pair."""

import pytest
from sqlmodel import Session

from vhl_portal import identity
from vhl_portal.access import (
    ADMIN_HOME,
    LOGIN_PATH,
    STUDENT_HOME,
    DecisionKind,
    SessionState,
    SessionStatus,
    authorize,
    capabilities,
    home_path,
    require_capability,
    resolve_session,
)
from vhl_portal.errors import AccessDenied
from vhl_portal.models import Profile, Role
from vhl_portal.services import admin_service, exam_service


def _profile(role, profile_id=1):
    return Profile(id=profile_id, full_name="Someone", email="someone@example.com", role=role)


@pytest.mark.parametrize("required", [Role.STUDENT, Role.ADMIN])
def test_loading_state_never_allows_or_redirects(required):
    decision = authorize(required, SessionState())
    assert decision.kind is DecisionKind.LOADING
    assert decision.location is None
    assert not decision.allowed


@pytest.mark.parametrize("required", [Role.STUDENT, Role.ADMIN])
def test_unauthenticated_goes_to_login(required):
    decision = authorize(required, SessionState.unauthenticated())
    assert decision.kind is DecisionKind.REDIRECT
    assert decision.location == LOGIN_PATH


def test_student_allowed_on_student_routes():
    state = SessionState.authenticated(_profile("student"))
    assert authorize(Role.STUDENT, state).allowed


def test_student_on_admin_route_is_sent_home():
    state = SessionState.authenticated(_profile("student"))
    decision = authorize(Role.ADMIN, state)
    assert decision.kind is DecisionKind.REDIRECT
    assert decision.location == STUDENT_HOME


def test_admin_is_allowed_everywhere():
    state = SessionState.authenticated(_profile("admin"))
    assert authorize(Role.ADMIN, state).allowed
    assert authorize(Role.STUDENT, state).allowed


def test_unknown_role_has_no_capabilities():
    profile = _profile("guest")
    assert capabilities(profile) == frozenset()
    assert capabilities(None) == frozenset()
    with pytest.raises(AccessDenied):
        require_capability(profile, Role.STUDENT)


def test_home_paths():
    assert home_path(_profile("admin")) == ADMIN_HOME
    assert home_path(_profile("student")) == STUDENT_HOME


def test_resolve_session_without_cookie(session):
    state = resolve_session({}, session)
    assert state.status is SessionStatus.UNAUTHENTICATED


def test_resolve_session_with_stale_user_id_fails_closed(session):
    data = {identity.SESSION_KEY: 9999}
    state = resolve_session(data, session)
    assert state.status is SessionStatus.UNAUTHENTICATED
    assert state.profile is None
    assert data == {}


def test_resolve_session_ignores_non_integer_ids(session):
    state = resolve_session({identity.SESSION_KEY: "1 OR 1=1"}, session)
    assert state.status is SessionStatus.UNAUTHENTICATED


def test_resolve_session_loads_profile(session, student_user):
    data = {}
    identity.start_session(data, student_user.id)
    state = resolve_session(data, session)
    assert state.status is SessionStatus.AUTHENTICATED
    assert state.profile.id == student_user.id


def test_service_layer_rejects_students_on_admin_operations(session, student_user, batch):
    with pytest.raises(AccessDenied):
        admin_service.create_exam(session, student_user, title="Sneaky", batch_id=batch.id)
    with pytest.raises(AccessDenied):
        admin_service.results_overview(session, student_user)


def test_service_layer_rejects_anonymous_attempts(session, exam):
    with pytest.raises(AccessDenied):
        exam_service.start_attempt(session, exam.id, None)


def test_admin_preview_requires_admin(session, student_user, exam):
    with pytest.raises(AccessDenied):
        exam_service.preview_exam(session, exam.id, student_user)
