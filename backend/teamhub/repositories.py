"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (students,
lecturers, teams, votes, mentorship requests, posts). Repositories only
`flush`; the calling service owns the transaction and commits it through
`database.atomic()` so a multi-step workflow lands all-or-nothing.

`get_for_update` methods lock the selected row until the transaction
ends (PostgreSQL `FOR UPDATE`; a no-op on SQLite, where the whole
transaction already holds the write lock).
"""

from typing import List, Optional

from sqlalchemy import delete, func, or_
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from . import models


class StudentRepository:
    """Queries over `Student` rows, including team membership."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, student: models.Student) -> models.Student:
        self.session.add(student)
        self.session.flush()
        return student

    def get(self, student_id: str) -> Optional[models.Student]:
        return self.session.get(models.Student, student_id)

    def get_for_update(self, student_id: str) -> Optional[models.Student]:
        stmt = (
            select(models.Student)
            .where(models.Student.id == student_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def get_by_email(self, email: str) -> Optional[models.Student]:
        stmt = select(models.Student).where(models.Student.email == email)
        return self.session.exec(stmt).first()

    def list_all(self) -> List[models.Student]:
        return self.session.exec(select(models.Student).order_by(models.Student.id)).all()

    def list_members(self, team_id: int) -> List[models.Student]:
        """Members of `team_id` ordered by id (lowest first)."""
        stmt = select(models.Student).where(models.Student.team_id == team_id).order_by(models.Student.id)
        return self.session.exec(stmt).all()

    def count_members(self, team_id: int) -> int:
        stmt = select(func.count()).select_from(models.Student).where(models.Student.team_id == team_id)
        return self.session.exec(stmt).one()

    def is_member(self, student_id: str, team_id: int) -> bool:
        stmt = select(models.Student.id).where(
            models.Student.id == student_id,
            models.Student.team_id == team_id,
        )
        return self.session.exec(stmt).first() is not None


class LecturerRepository:
    """CRUD operations for `Lecturer` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, lecturer: models.Lecturer) -> models.Lecturer:
        self.session.add(lecturer)
        self.session.flush()
        return lecturer

    def get(self, lecturer_id: str) -> Optional[models.Lecturer]:
        return self.session.get(models.Lecturer, lecturer_id)

    def get_by_email(self, email: str) -> Optional[models.Lecturer]:
        stmt = select(models.Lecturer).where(models.Lecturer.email == email)
        return self.session.exec(stmt).first()

    def list_all(self) -> List[models.Lecturer]:
        return self.session.exec(select(models.Lecturer).order_by(models.Lecturer.id)).all()

    def delete(self, lecturer: models.Lecturer) -> None:
        self.session.delete(lecturer)
        self.session.flush()


class TeamRepository:
    """Persistence for `Team` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, team: models.Team) -> models.Team:
        """Persist a new team and flush to obtain its id."""
        self.session.add(team)
        self.session.flush()
        return team

    def get(self, team_id: int) -> Optional[models.Team]:
        return self.session.get(models.Team, team_id)

    def get_for_update(self, team_id: int) -> Optional[models.Team]:
        """Load and lock a team row for the rest of the transaction."""
        stmt = (
            select(models.Team)
            .where(models.Team.id == team_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def list_with_counts(self):
        """Return `(team, member_count)` pairs ordered by team id."""
        counts = (
            select(models.Student.team_id, func.count(models.Student.id).label("members"))
            .where(models.Student.team_id.is_not(None))
            .group_by(models.Student.team_id)
            .subquery()
        )
        stmt = (
            select(models.Team, func.coalesce(counts.c.members, 0))
            .outerjoin(counts, counts.c.team_id == models.Team.id)
            .order_by(models.Team.id)
        )
        return self.session.exec(stmt).all()

    def delete(self, team: models.Team) -> None:
        """Delete a team with its votes and mentorship requests."""
        VoteRepository(self.session).delete_for_team(team.id)
        MentorshipRequestRepository(self.session).delete_for_team(team.id)
        self.session.delete(team)
        self.session.flush()


class VoteRepository:
    """Standing leader votes, one per (team, voter)."""
    def __init__(self, session: Session):
        self.session = session

    def upsert(self, team_id: int, voter_id: str, candidate_id: str) -> models.Vote:
        """Point the voter's standing vote at `candidate_id`.

        An existing ballot is overwritten in place, never duplicated.
        """
        vote = self.session.get(models.Vote, (team_id, voter_id))
        if vote is None:
            vote = models.Vote(team_id=team_id, voter_id=voter_id, candidate_id=candidate_id)
        else:
            vote.candidate_id = candidate_id
            vote.updated_at = models.utcnow()
        self.session.add(vote)
        self.session.flush()
        return vote

    def tally(self, team_id: int, candidate_id: str) -> int:
        stmt = select(func.count()).select_from(models.Vote).where(
            models.Vote.team_id == team_id,
            models.Vote.candidate_id == candidate_id,
        )
        return self.session.exec(stmt).one()

    def tallies(self, team_id: int) -> dict:
        stmt = (
            select(models.Vote.candidate_id, func.count())
            .where(models.Vote.team_id == team_id)
            .group_by(models.Vote.candidate_id)
        )
        return {candidate: count for candidate, count in self.session.exec(stmt).all()}

    def list_for_team(self, team_id: int):
        """Return `(vote, voter_name, candidate_name)` rows for a team."""
        voter = aliased(models.Student)
        candidate = aliased(models.Student)
        stmt = (
            select(models.Vote, voter.full_name, candidate.full_name)
            .outerjoin(voter, voter.id == models.Vote.voter_id)
            .outerjoin(candidate, candidate.id == models.Vote.candidate_id)
            .where(models.Vote.team_id == team_id)
            .order_by(models.Vote.voter_id)
        )
        return self.session.exec(stmt).all()

    def delete_for_team(self, team_id: int) -> None:
        self.session.exec(delete(models.Vote).where(models.Vote.team_id == team_id))

    def delete_involving(self, team_id: int, student_id: str) -> None:
        """Drop ballots cast by or naming `student_id` in `team_id`."""
        self.session.exec(
            delete(models.Vote).where(
                models.Vote.team_id == team_id,
                or_(models.Vote.voter_id == student_id, models.Vote.candidate_id == student_id),
            )
        )


class MentorshipRequestRepository:
    """Mentorship requests between teams and lecturers."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, request: models.MentorshipRequest) -> models.MentorshipRequest:
        self.session.add(request)
        self.session.flush()
        return request

    def get(self, request_id: int) -> Optional[models.MentorshipRequest]:
        return self.session.get(models.MentorshipRequest, request_id)

    def get_pending_for_team(self, team_id: int) -> Optional[models.MentorshipRequest]:
        stmt = select(models.MentorshipRequest).where(
            models.MentorshipRequest.team_id == team_id,
            models.MentorshipRequest.status == models.RequestStatus.PENDING.value,
        )
        return self.session.exec(stmt).first()

    def get_pending_for_lecturer(self, request_id: int, lecturer_id: str) -> Optional[models.MentorshipRequest]:
        """Lock the request if it is pending and addressed to `lecturer_id`."""
        stmt = (
            select(models.MentorshipRequest)
            .where(
                models.MentorshipRequest.id == request_id,
                models.MentorshipRequest.lecturer_id == lecturer_id,
                models.MentorshipRequest.status == models.RequestStatus.PENDING.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def _detail_query(self):
        return (
            select(models.MentorshipRequest, models.Team.name, models.Student.full_name)
            .join(models.Team, models.Team.id == models.MentorshipRequest.team_id)
            .outerjoin(models.Student, models.Student.id == models.Team.leader_id)
        )

    def list_for_lecturer(self, lecturer_id: str):
        """Return `(request, team_name, leader_name)` rows, newest first."""
        stmt = (
            self._detail_query()
            .where(models.MentorshipRequest.lecturer_id == lecturer_id)
            .order_by(models.MentorshipRequest.created_at.desc(), models.MentorshipRequest.id.desc())
        )
        return self.session.exec(stmt).all()

    def get_detail(self, request_id: int):
        stmt = self._detail_query().where(models.MentorshipRequest.id == request_id)
        return self.session.exec(stmt).first()

    def delete_for_team(self, team_id: int) -> None:
        self.session.exec(
            delete(models.MentorshipRequest).where(models.MentorshipRequest.team_id == team_id)
        )


class PostRepository:
    """CRUD operations for `Post` and related `Comment` records."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, post: models.Post) -> models.Post:
        self.session.add(post)
        self.session.flush()
        return post

    def get(self, post_id: int) -> Optional[models.Post]:
        return self.session.get(models.Post, post_id)

    def list_all(self) -> List[models.Post]:
        stmt = select(models.Post).order_by(models.Post.created_at.desc(), models.Post.id.desc())
        return self.session.exec(stmt).all()

    def delete(self, post: models.Post) -> None:
        self.session.exec(delete(models.Comment).where(models.Comment.post_id == post.id))
        self.session.delete(post)
        self.session.flush()

    def add_comment(self, comment: models.Comment) -> models.Comment:
        self.session.add(comment)
        self.session.flush()
        return comment

    def get_comment(self, comment_id: int) -> Optional[models.Comment]:
        return self.session.get(models.Comment, comment_id)

    def list_comments(self, post_id: int) -> List[models.Comment]:
        stmt = (
            select(models.Comment)
            .where(models.Comment.post_id == post_id)
            .order_by(models.Comment.created_at, models.Comment.id)
        )
        return self.session.exec(stmt).all()

    def delete_comment(self, comment: models.Comment) -> None:
        self.session.delete(comment)
        self.session.flush()
