"""FastAPI entrypoint for the VHL Abroad Career portal."""

import logging
import logging.config

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from vhl_portal.access import LOGIN_PATH, SessionState, SessionStatus, home_path
from vhl_portal.config import LOGGING, SECRET_KEY, TEMPLATES_DIR
from vhl_portal.database import create_db_and_tables, new_session
from vhl_portal.deps import SessionPending, get_session_state
from vhl_portal.routers import admin as admin_router_module
from vhl_portal.routers import auth as auth_router_module
from vhl_portal.routers import exam as exam_router_module
from vhl_portal.routers import questions as questions_router_module
from vhl_portal.routers import student as student_router_module
from vhl_portal.seed import seed_defaults
from vhl_portal.services.timer import AttemptTimers

logging.config.dictConfig(LOGGING)
logger = logging.getLogger(__name__)

app = FastAPI(title="VHL Abroad Career")
app.state.timers = AttemptTimers(new_session)

templates = Jinja2Templates(directory=TEMPLATES_DIR)


@app.exception_handler(SessionPending)
async def session_pending_handler(request: Request, exc: SessionPending):
    """Render the neutral placeholder while the session is still resolving."""
    return templates.TemplateResponse(request, "loading.html", {}, status_code=status.HTTP_200_OK)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Turn login/role redirects into real redirects; keep JSON for the rest."""
    # For 303 redirects (like login redirects), let them pass through
    if exc.status_code == 303 and exc.headers and exc.headers.get("Location"):
        return RedirectResponse(url=exc.headers["Location"], status_code=status.HTTP_303_SEE_OTHER)
    if exc.status_code == 404 and "text/html" in request.headers.get("accept", ""):
        return templates.TemplateResponse(
            request,
            "not_found.html",
            {"detail": exc.detail},
            status_code=status.HTTP_404_NOT_FOUND,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Session middleware for signed cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=SECRET_KEY)

# Routers
app.include_router(auth_router_module.router, tags=["auth"])
app.include_router(student_router_module.router, tags=["student"])
app.include_router(exam_router_module.router, tags=["exam"])
app.include_router(questions_router_module.router, prefix="/admin/questions", tags=["questions"])
app.include_router(admin_router_module.router, prefix="/admin", tags=["admin"])


@app.get("/")
def home(state: SessionState = Depends(get_session_state)):
    """Send visitors to their home page, or to the login page."""
    if state.status is SessionStatus.AUTHENTICATED and state.profile is not None:
        target = home_path(state.profile)
    else:
        target = LOGIN_PATH
    return RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)


@app.on_event("startup")
def on_startup():
    """Initialize database schema and seed the default admin and batch."""
    create_db_and_tables()
    with new_session() as session:
        seed_defaults(session)


@app.on_event("shutdown")
async def on_shutdown():
    timers = app.state.timers
    pending = timers.cancel_all()
    await timers.join()
    logger.info("Cancelled %s pending attempt timer(s)", pending)
