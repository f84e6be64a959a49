"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Team membership is recorded only on `Student.team_id`; member counts are
always derived by counting students, never stored. `Team.leader_id` and
`Team.mentor_id` are weak references without foreign keys.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    STUDENT = "Student"
    LEADER = "Leader"
    ADMIN = "Admin"
    LECTURER = "Lecturer"


class TeamStatus(str, Enum):
    OPEN = "Open"
    PENDING = "Pending"
    VOTING = "Voting"
    ACTIVE = "Active"
    LOCKED = "Locked"


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


MAJORS = ("SE", "AI", "SA", "SS", "IB")
COHORTS = tuple(f"K{n}" for n in range(15, 23))


class Student(SQLModel, table=True):
    """A registered student (or admin, who shares the student table).

    `role` only ever stores `Student` or `Admin`; `Leader` is derived
    from `Team.leader_id` at read time.
    """
    id: str = Field(primary_key=True, max_length=32)
    full_name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    role: str = Field(default=Role.STUDENT.value)
    team_id: Optional[int] = Field(default=None, foreign_key="team.id", index=True)
    major: Optional[str] = None
    cohort: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Lecturer(SQLModel, table=True):
    """A lecturer who can mentor teams."""
    id: str = Field(primary_key=True, max_length=32)
    full_name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    department: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Team(SQLModel, table=True):
    """A bounded-capacity group of students."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: str = ""
    status: str = Field(default=TeamStatus.PENDING.value, index=True)
    capacity: int
    leader_id: Optional[str] = Field(default=None, index=True)
    mentor_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Vote(SQLModel, table=True):
    """A voter's standing leader vote inside one team."""
    team_id: int = Field(foreign_key="team.id", primary_key=True)
    voter_id: str = Field(foreign_key="student.id", primary_key=True)
    candidate_id: str = Field(foreign_key="student.id", index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class MentorshipRequest(SQLModel, table=True):
    """A team's request for a lecturer to mentor it.

    The partial unique index keeps at most one pending request per team
    even if two senders slip past the service-level check.
    """
    __table_args__ = (
        Index(
            "uq_mentorshiprequest_pending_team",
            "team_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="team.id", index=True)
    lecturer_id: str = Field(foreign_key="lecturer.id", index=True)
    status: str = Field(default=RequestStatus.PENDING.value)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Post(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    author_id: str = Field(index=True)
    author_role: str
    title: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Comment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="post.id", index=True)
    author_id: str = Field(index=True)
    author_role: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)
