"""FastAPI application entrypoint and HTTP controllers.

Controllers are intentionally thin: they resolve the principal, delegate
to services, and return JSON. Domain errors raised by services are
rendered by one exception handler as `{"kind", "code", "message"}`.

Endpoints implemented:
- POST /auth/register, POST /auth/login
- GET /students/me, GET /students (admin)
- GET /teams, GET /teams/{team_id}, POST /teams
- POST /teams/{team_id}/join, POST /teams/{team_id}/leave
- POST /votes/leader, GET /votes/leader/{team_id}
- GET /lecturers
- POST /teams/{team_id}/mentorship-requests/{lecturer_id}
- GET /mentorship-requests, PATCH /mentorship-requests/{request_id}
- /admin/lecturers CRUD, PATCH /admin/teams/{team_id}/status,
  DELETE /admin/teams/{team_id}
- /posts and /posts/{post_id}/comments
- GET /health
"""

import json
import logging
import time
import uuid

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from . import errors, services
from .auth import get_current_principal, require_admin, require_lecturer, require_student
from .config import settings
from .database import create_db_and_tables, get_session
from .notifications import InMemoryDispatcher, NotificationDispatcher
from .policy import Principal
from .schemas import (
    CommentIn,
    CreateTeamIn,
    LecturerIn,
    LecturerUpdateIn,
    LoginIn,
    PostIn,
    PostUpdateIn,
    RegisterIn,
    RespondIn,
    TeamStatusIn,
    VoteIn,
)

app = FastAPI(title="Team Formation API")
logger = logging.getLogger("teamhub.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()

dispatcher = InMemoryDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    """Dependency returning the process-wide notification dispatcher."""
    return dispatcher


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            },
            ensure_ascii=True,
        ),
    )
    return response


@app.exception_handler(errors.DomainError)
async def domain_error_handler(request: Request, exc: errors.DomainError):
    headers = {"Retry-After": "1"} if isinstance(exc, errors.Transient) else None
    return JSONResponse(status_code=errors.http_status_for(exc), content=exc.to_dict(), headers=headers)


@app.exception_handler(OperationalError)
async def storage_error_handler(request: Request, exc: OperationalError):
    logger.warning("storage_unavailable %s", exc.orig if exc.orig is not None else exc)
    err = errors.Transient()
    return JSONResponse(status_code=errors.http_status_for(err), content=err.to_dict(), headers={"Retry-After": "1"})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()
    )
    err = errors.InvalidInput(messages or None)
    return JSONResponse(status_code=errors.http_status_for(err), content=err.to_dict())


# -- auth / students ---------------------------------------------------------

@app.post('/auth/register', status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new student account."""
    return services.AuthService(db).register_student(
        payload.id, payload.full_name, payload.email, payload.password, payload.major, payload.cohort,
    )


@app.post('/auth/login')
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a student or lecturer and return a JWT bearer token.

    The token carries `user_id` and `role` and is signed with the
    configured JWT secret.
    """
    return services.AuthService(db).authenticate(payload.email, payload.password)


@app.get('/students/me')
def me(db: Session = Depends(get_session), principal: Principal = Depends(require_student)):
    return services.StudentService(db).me(principal)


@app.get('/students')
def list_students(db: Session = Depends(get_session), principal: Principal = Depends(require_admin)):
    return services.StudentService(db).list_all(principal)


# -- membership ledger -------------------------------------------------------

@app.get('/teams')
def list_teams(db: Session = Depends(get_session), principal: Principal = Depends(get_current_principal)):
    return services.MembershipService(db).list_teams()


@app.get('/teams/{team_id}')
def get_team(team_id: int, db: Session = Depends(get_session), principal: Principal = Depends(get_current_principal)):
    """Team detail with members; a member's role shows `Leader` for the current leader."""
    return services.MembershipService(db).get_team(team_id)


@app.post('/teams', status_code=201)
def create_team(
    payload: CreateTeamIn,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_student),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    """Create a team; the caller becomes its leader and first member."""
    svc = services.MembershipService(db, bus)
    return svc.create_team(principal, payload.name, payload.description, payload.max_members)


@app.post('/teams/{team_id}/join')
def join_team(
    team_id: int,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_student),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    return services.MembershipService(db, bus).join_team(principal, team_id)


@app.post('/teams/{team_id}/leave')
def leave_team(
    team_id: int,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_student),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    return services.MembershipService(db, bus).leave_team(principal, team_id)


# -- leader election ---------------------------------------------------------

@app.post('/votes/leader')
def vote_leader(
    payload: VoteIn,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_student),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    """Cast or change the caller's leader vote.

    Returns `{status: voted|leader_chosen, votes, total_members}`.
    """
    return services.ElectionService(db, bus).vote_leader(principal, payload.team_id, payload.candidate_id)


@app.get('/votes/leader/{team_id}')
def vote_results(team_id: int, db: Session = Depends(get_session), principal: Principal = Depends(get_current_principal)):
    return services.ElectionService(db).vote_results(principal, team_id)


# -- mentorship requests -----------------------------------------------------

@app.get('/lecturers')
def list_lecturers(db: Session = Depends(get_session), principal: Principal = Depends(get_current_principal)):
    return services.MentorshipService(db).list_lecturers()


@app.post('/teams/{team_id}/mentorship-requests/{lecturer_id}', status_code=201)
def send_mentorship_request(
    team_id: int,
    lecturer_id: str,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_student),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    """Leader-only: ask a lecturer to mentor the team."""
    return services.MentorshipService(db, bus).send_request(principal, team_id, lecturer_id)


@app.get('/mentorship-requests')
def list_mentorship_requests(db: Session = Depends(get_session), principal: Principal = Depends(require_lecturer)):
    return services.MentorshipService(db).list_requests(principal)


@app.patch('/mentorship-requests/{request_id}')
def respond_mentorship_request(
    request_id: int,
    payload: RespondIn,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_lecturer),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    return services.MentorshipService(db, bus).respond_request(principal, request_id, payload.action)


# -- admin -------------------------------------------------------------------

@app.post('/admin/lecturers', status_code=201)
def create_lecturer(payload: LecturerIn, db: Session = Depends(get_session), principal: Principal = Depends(require_admin)):
    return services.LecturerAdminService(db).create_lecturer(
        principal, payload.id, payload.full_name, payload.email, payload.password, payload.department,
    )


@app.get('/admin/lecturers')
def admin_list_lecturers(db: Session = Depends(get_session), principal: Principal = Depends(require_admin)):
    return services.LecturerAdminService(db).list_lecturers(principal)


@app.put('/admin/lecturers/{lecturer_id}')
def update_lecturer(
    lecturer_id: str,
    payload: LecturerUpdateIn,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    return services.LecturerAdminService(db).update_lecturer(
        principal, lecturer_id, payload.full_name, payload.email, payload.password, payload.department,
    )


@app.delete('/admin/lecturers/{lecturer_id}')
def delete_lecturer(lecturer_id: str, db: Session = Depends(get_session), principal: Principal = Depends(require_admin)):
    services.LecturerAdminService(db).delete_lecturer(principal, lecturer_id)
    return {'status': 'ok'}


@app.patch('/admin/teams/{team_id}/status')
def set_team_status(
    team_id: int,
    payload: TeamStatusIn,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_admin),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    """Administrative status change, the only way into or out of `Locked`."""
    return services.TeamAdminService(db, bus).set_status(principal, team_id, payload.status)


@app.delete('/admin/teams/{team_id}')
def admin_delete_team(
    team_id: int,
    db: Session = Depends(get_session),
    principal: Principal = Depends(require_admin),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    services.TeamAdminService(db, bus).delete_team(principal, team_id)
    return {'status': 'ok'}


# -- posts & comments --------------------------------------------------------

@app.post('/posts', status_code=201)
def create_post(
    payload: PostIn,
    db: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    return services.PostService(db, bus).create_post(principal, payload.title, payload.content)


@app.get('/posts')
def list_posts(db: Session = Depends(get_session), principal: Principal = Depends(get_current_principal)):
    return services.PostService(db).list_posts()


@app.put('/posts/{post_id}')
def update_post(
    post_id: int,
    payload: PostUpdateIn,
    db: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    return services.PostService(db, bus).update_post(principal, post_id, payload.title, payload.content)


@app.delete('/posts/{post_id}')
def delete_post(
    post_id: int,
    db: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    services.PostService(db, bus).delete_post(principal, post_id)
    return {'status': 'ok'}


@app.post('/posts/{post_id}/comments', status_code=201)
def add_comment(
    post_id: int,
    payload: CommentIn,
    db: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    return services.PostService(db, bus).add_comment(principal, post_id, payload.content)


@app.get('/posts/{post_id}/comments')
def list_comments(post_id: int, db: Session = Depends(get_session), principal: Principal = Depends(get_current_principal)):
    return services.PostService(db).list_comments(post_id)


@app.delete('/posts/{post_id}/comments/{comment_id}')
def delete_comment(
    post_id: int,
    comment_id: int,
    db: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    bus: NotificationDispatcher = Depends(get_dispatcher),
):
    services.PostService(db, bus).delete_comment(principal, post_id, comment_id)
    return {'status': 'ok'}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
