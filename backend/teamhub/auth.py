"""Authentication helpers and FastAPI security dependencies.

This module decodes JWT bearer tokens into a `Principal` (id + role) and
exposes role-gated dependencies built on `policy`. Token verification
raises HTTPExceptions on failure so it can be used directly inside route
dependencies; role checks raise `errors.Forbidden`, rendered by the
application's domain error handler.
"""

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import policy, repositories
from .config import settings
from .database import get_session
from .models import Role
from .policy import Principal

bearer_scheme = HTTPBearer()


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> Principal:
    """FastAPI dependency that returns the authenticated principal.

    The account is looked up so deleted users lose access immediately,
    and the stored role wins over the role baked into the token.
    """
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    role = payload.get('role')
    if not user_id or not role:
        raise HTTPException(status_code=401, detail='invalid token payload')
    if role == Role.LECTURER.value:
        user = repositories.LecturerRepository(session).get(user_id)
        resolved_role = Role.LECTURER.value
    else:
        user = repositories.StudentRepository(session).get(user_id)
        resolved_role = user.role if user else None
    principal = Principal(id=user.id, role=resolved_role) if user else None
    # release the read transaction before the service opens its own
    session.rollback()
    if principal is None:
        raise HTTPException(status_code=401, detail='user not found')
    return principal


def require_student(principal: Principal = Depends(get_current_principal)) -> Principal:
    return policy.require_student(principal)


def require_lecturer(principal: Principal = Depends(get_current_principal)) -> Principal:
    return policy.require_lecturer(principal)


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    return policy.require_admin(principal)
