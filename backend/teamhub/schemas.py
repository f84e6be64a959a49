"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Domain rules (capacity bounds, enum
membership) are enforced again by the services.
"""

from typing import Optional

from pydantic import BaseModel, Field


class RegisterIn(BaseModel):
    """Payload for student self-registration."""
    id: str = Field(min_length=1, max_length=32)
    full_name: str = Field(min_length=1)
    email: str
    password: str = Field(min_length=1)
    major: str
    cohort: str


class LoginIn(BaseModel):
    email: str
    password: str


class CreateTeamIn(BaseModel):
    """Request body for creating a team led by the caller."""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    max_members: int


class VoteIn(BaseModel):
    team_id: int
    candidate_id: str = Field(min_length=1)


class RespondIn(BaseModel):
    """Lecturer decision on a mentorship request: `accept` or `reject`."""
    action: str


class LecturerIn(BaseModel):
    id: str = Field(min_length=1, max_length=32)
    full_name: str = Field(min_length=1)
    email: str
    password: str = Field(min_length=1)
    department: Optional[str] = None


class LecturerUpdateIn(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    department: Optional[str] = None


class TeamStatusIn(BaseModel):
    status: str


class PostIn(BaseModel):
    title: str
    content: str


class PostUpdateIn(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class CommentIn(BaseModel):
    content: str
