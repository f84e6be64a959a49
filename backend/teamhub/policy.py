"""Access policy checks gating every mutating operation.

The guard works on a resolved `Principal` (id + role) and never verifies
credentials itself; `auth.get_current_principal` produces principals
from bearer tokens. Guards raise `errors.Forbidden` so the operation is
short-circuited before any state changes.
"""

from dataclasses import dataclass

from sqlmodel import Session

from . import errors, repositories
from .models import Role


@dataclass(frozen=True)
class Principal:
    """Authenticated identity and role attached to a request."""
    id: str
    role: str


def is_admin(principal: Principal) -> bool:
    return principal.role == Role.ADMIN.value


def is_lecturer(principal: Principal) -> bool:
    return principal.role == Role.LECTURER.value


def is_student(principal: Principal) -> bool:
    """Students and admins live in the student table and can join teams."""
    return principal.role in (Role.STUDENT.value, Role.LEADER.value, Role.ADMIN.value)


def is_team_leader(session: Session, principal: Principal, team_id: int) -> bool:
    team = repositories.TeamRepository(session).get(team_id)
    return team is not None and team.leader_id == principal.id


def can_modify_content(principal: Principal, author_id: str) -> bool:
    """Only the author or an admin may edit or delete a post/comment."""
    return principal.id == author_id or is_admin(principal)


def require_admin(principal: Principal) -> Principal:
    if not is_admin(principal):
        raise errors.Forbidden("access denied: admin only")
    return principal


def require_lecturer(principal: Principal) -> Principal:
    if not is_lecturer(principal):
        raise errors.Forbidden("access denied: lecturer only")
    return principal


def require_student(principal: Principal) -> Principal:
    if not is_student(principal):
        raise errors.Forbidden("access denied: students only")
    return principal


def require_team_leader(session: Session, principal: Principal, team_id: int) -> Principal:
    if not is_team_leader(session, principal, team_id):
        raise errors.NotTeamLeader()
    return principal
