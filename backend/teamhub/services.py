"""Business logic services used by HTTP controllers.

This module holds the service classes that coordinate repositories, the
access policy and the notification dispatcher. Each state-changing
method follows the same shape:

1. check the principal's capability (`policy.require_*`),
2. run the whole read-check-write sequence inside `database.atomic()`
   with the affected rows locked, building the response snapshot before
   commit,
3. publish notifications only after the transaction has committed.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import errors, models, notifications, policy, repositories
from .config import settings
from .database import atomic
from .models import RequestStatus, Role, TeamStatus
from .policy import Principal

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

logger = logging.getLogger("teamhub.services")


def _log(event: str, **fields) -> None:
    logger.info("%s %s", event, json.dumps(fields, ensure_ascii=True, default=str))


def display_role(student: models.Student, team: Optional[models.Team] = None) -> str:
    """Role label shown for a student.

    `Leader` is projected from `team.leader_id`; it is never stored.
    """
    if student.role == Role.ADMIN.value:
        return Role.ADMIN.value
    if team is not None and team.leader_id == student.id:
        return Role.LEADER.value
    return Role.STUDENT.value


def team_snapshot(session: Session, team: models.Team) -> dict:
    """Serializable view of a team with its derived member count."""
    students = repositories.StudentRepository(session)
    leader = students.get(team.leader_id) if team.leader_id else None
    mentor = repositories.LecturerRepository(session).get(team.mentor_id) if team.mentor_id else None
    return {
        'id': team.id,
        'name': team.name,
        'description': team.description,
        'status': team.status,
        'capacity': team.capacity,
        'member_count': students.count_members(team.id),
        'leader_id': team.leader_id,
        'leader_name': leader.full_name if leader else None,
        'mentor_id': team.mentor_id,
        'mentor_name': mentor.full_name if mentor else None,
    }


def _touch(row) -> None:
    row.updated_at = models.utcnow()


class AuthService:
    """Registration, credential checks and token issuing."""
    def __init__(self, session: Session):
        self.session = session
        self.students = repositories.StudentRepository(session)
        self.lecturers = repositories.LecturerRepository(session)

    def register_student(self, student_id: str, full_name: str, email: str, password: str,
                         major: str, cohort: str, role: Role = Role.STUDENT) -> dict:
        """Create a student account with a hashed password.

        Self-registration always creates plain students; admins are
        created with `role=Role.ADMIN` from the bootstrap script.
        """
        student_id = (student_id or '').strip()
        email = (email or '').strip().lower()
        if not student_id or not full_name or not email or not password:
            raise errors.InvalidInput('id, full_name, email and password are required')
        if '@' not in email:
            raise errors.InvalidInput('invalid email address')
        if major not in models.MAJORS:
            raise errors.InvalidInput(f"major must be one of {', '.join(models.MAJORS)}")
        if cohort not in models.COHORTS:
            raise errors.InvalidInput(f"cohort must be one of {', '.join(models.COHORTS)}")
        if role not in (Role.STUDENT, Role.ADMIN):
            raise errors.InvalidInput('role must be Student or Admin')
        with atomic(self.session):
            if self.students.get_by_email(email) or self.lecturers.get_by_email(email):
                raise errors.EmailTaken()
            if self.students.get(student_id):
                raise errors.IdTaken('student id already exists')
            student = models.Student(
                id=student_id,
                full_name=full_name.strip(),
                email=email,
                password_hash=PWD_CTX.hash(password),
                role=role.value,
                major=major,
                cohort=cohort,
            )
            try:
                self.students.create(student)
            except IntegrityError as exc:
                raise errors.IdTaken('email or student id already exists') from exc
            out = StudentService.profile(self.session, student)
        _log('student_registered', student_id=student_id, role=role.value)
        return out

    def authenticate(self, email: str, password: str) -> dict:
        """Verify credentials for a student or lecturer and return a token.

        Students are looked up first, then lecturers, both by email.
        """
        email = (email or '').strip().lower()
        with atomic(self.session):
            user = self.students.get_by_email(email)
            role = user.role if user else None
            if user is None:
                user = self.lecturers.get_by_email(email)
                role = Role.LECTURER.value
            if user is None or not PWD_CTX.verify(password, user.password_hash):
                raise errors.InvalidCredentials()
            out = {
                'access_token': self.issue_token(user.id, role),
                'user': {'id': user.id, 'full_name': user.full_name, 'email': user.email, 'role': role},
            }
        _log('login', user_id=user.id, role=role)
        return out

    @staticmethod
    def issue_token(user_id: str, role: str, expires_hours: Optional[int] = None) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours or settings.JWT_EXPIRE_HOURS)
        payload = {'user_id': user_id, 'role': role, 'exp': int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class StudentService:
    """Read-side student profiles."""
    def __init__(self, session: Session):
        self.session = session
        self.students = repositories.StudentRepository(session)
        self.teams = repositories.TeamRepository(session)

    @staticmethod
    def profile(session: Session, student: models.Student) -> dict:
        team = repositories.TeamRepository(session).get(student.team_id) if student.team_id else None
        return {
            'id': student.id,
            'full_name': student.full_name,
            'email': student.email,
            'role': display_role(student, team),
            'major': student.major,
            'cohort': student.cohort,
            'team_id': student.team_id,
            'team_name': team.name if team else None,
        }

    def me(self, principal: Principal) -> dict:
        policy.require_student(principal)
        with atomic(self.session):
            student = self.students.get(principal.id)
            if student is None:
                raise errors.NotFound('student not found')
            return self.profile(self.session, student)

    def list_all(self, principal: Principal) -> list:
        policy.require_admin(principal)
        with atomic(self.session):
            return [self.profile(self.session, s) for s in self.students.list_all()]


class MembershipService:
    """Membership ledger: create, join and leave teams.

    The student row is locked before the team row in every method so
    concurrent calls cannot deadlock on each other.
    """
    def __init__(self, session: Session, dispatcher: Optional[notifications.NotificationDispatcher] = None):
        self.session = session
        self.dispatcher = dispatcher or notifications.LoggingDispatcher()
        self.students = repositories.StudentRepository(session)
        self.teams = repositories.TeamRepository(session)
        self.votes = repositories.VoteRepository(session)

    def _lock_student(self, principal: Principal) -> models.Student:
        student = self.students.get_for_update(principal.id)
        if student is None:
            raise errors.NotFound('student not found')
        return student

    def create_team(self, principal: Principal, name: str, description: Optional[str], capacity: int) -> dict:
        """Create a team led by the caller, who becomes its first member."""
        policy.require_student(principal)
        name = (name or '').strip()
        if not name:
            raise errors.InvalidInput('team name is required')
        if capacity is None or capacity < 2 or capacity > settings.MAX_TEAM_CAPACITY:
            raise errors.InvalidInput(f'max members must be between 2 and {settings.MAX_TEAM_CAPACITY}')
        with atomic(self.session):
            student = self._lock_student(principal)
            if student.team_id is not None:
                raise errors.AlreadyMember()
            team = self.teams.create(models.Team(
                name=name,
                description=(description or '').strip(),
                status=TeamStatus.PENDING.value,
                capacity=capacity,
                leader_id=student.id,
            ))
            student.team_id = team.id
            self.session.add(student)
            self.session.flush()
            snapshot = team_snapshot(self.session, team)
        _log('team_created', team_id=snapshot['id'], leader_id=principal.id, capacity=capacity)
        self.dispatcher.notify_broadcast(notifications.TEAM_CREATED, snapshot)
        return snapshot

    def join_team(self, principal: Principal, team_id: int) -> dict:
        """Add the caller to `team_id` if a slot is free.

        The count-compare-write sequence runs with the team row locked,
        so of two concurrent joins for the last slot only one succeeds.
        Reaching capacity moves a Pending/Open team to Voting.
        """
        policy.require_student(principal)
        with atomic(self.session):
            student = self._lock_student(principal)
            if student.team_id is not None:
                raise errors.AlreadyMember()
            team = self.teams.get_for_update(team_id)
            if team is None:
                raise errors.NotFound('team not found')
            if team.status == TeamStatus.LOCKED.value:
                raise errors.TeamLocked()
            members = self.students.count_members(team.id)
            if members >= team.capacity:
                raise errors.Full()
            student.team_id = team.id
            self.session.add(student)
            if members + 1 >= team.capacity and team.status in (TeamStatus.PENDING.value, TeamStatus.OPEN.value):
                team.status = TeamStatus.VOTING.value
                _touch(team)
                self.session.add(team)
            self.session.flush()
            snapshot = team_snapshot(self.session, team)
        _log('team_joined', team_id=team_id, student_id=principal.id, members=snapshot['member_count'], status=snapshot['status'])
        self.dispatcher.notify_broadcast(notifications.TEAM_UPDATED, snapshot)
        return snapshot

    def leave_team(self, principal: Principal, team_id: int) -> dict:
        """Remove the caller from `team_id`.

        Ballots cast by or for the leaving student are dropped. A leaving
        leader hands over to the remaining member with the lowest id; the
        last member leaving deletes the team with its votes and requests.
        """
        policy.require_student(principal)
        with atomic(self.session):
            student = self._lock_student(principal)
            if student.team_id != team_id:
                raise errors.NotMember()
            team = self.teams.get_for_update(team_id)
            if team is None:
                raise errors.NotFound('team not found')
            if team.status == TeamStatus.LOCKED.value:
                raise errors.TeamLocked()
            self.votes.delete_involving(team.id, student.id)
            student.team_id = None
            self.session.add(student)
            self.session.flush()
            remaining = self.students.list_members(team.id)
            result = {'team_id': team_id, 'team_deleted': False, 'leader_id': team.leader_id}
            if not remaining:
                self.teams.delete(team)
                result['team_deleted'] = True
                result['leader_id'] = None
                snapshot = None
            else:
                if team.leader_id not in {m.id for m in remaining}:
                    team.leader_id = remaining[0].id
                    _touch(team)
                    self.session.add(team)
                    self.session.flush()
                result['leader_id'] = team.leader_id
                snapshot = team_snapshot(self.session, team)
        _log('team_left', team_id=team_id, student_id=principal.id, team_deleted=result['team_deleted'], leader_id=result['leader_id'])
        if snapshot is None:
            self.dispatcher.notify_broadcast(notifications.TEAM_DELETED, {'id': team_id})
        else:
            self.dispatcher.notify_broadcast(notifications.TEAM_UPDATED, snapshot)
        return result

    def list_teams(self) -> list:
        with atomic(self.session):
            out = []
            for team, members in self.teams.list_with_counts():
                out.append({
                    'id': team.id,
                    'name': team.name,
                    'description': team.description,
                    'status': team.status,
                    'capacity': team.capacity,
                    'member_count': members,
                    'leader_id': team.leader_id,
                    'mentor_id': team.mentor_id,
                })
            return out

    def get_team(self, team_id: int) -> dict:
        """Team detail including members and their display roles."""
        with atomic(self.session):
            team = self.teams.get(team_id)
            if team is None:
                raise errors.NotFound('team not found')
            out = team_snapshot(self.session, team)
            out['members'] = [
                {'id': s.id, 'full_name': s.full_name, 'email': s.email, 'role': display_role(s, team)}
                for s in self.students.list_members(team.id)
            ]
            return out


class ElectionService:
    """Majority-vote leader election within a team."""
    def __init__(self, session: Session, dispatcher: Optional[notifications.NotificationDispatcher] = None):
        self.session = session
        self.dispatcher = dispatcher or notifications.LoggingDispatcher()
        self.students = repositories.StudentRepository(session)
        self.teams = repositories.TeamRepository(session)
        self.votes = repositories.VoteRepository(session)

    def vote_leader(self, principal: Principal, team_id: int, candidate_id: str) -> dict:
        """Cast or change the caller's standing vote and re-tally.

        A candidate with strictly more than half of the current members'
        votes becomes leader (a Voting team turns Active). Votes keep
        being accepted after a leader is chosen, so a later majority can
        replace the leader.
        """
        policy.require_student(principal)
        if principal.id == candidate_id:
            raise errors.SelfVote()
        with atomic(self.session):
            team = self.teams.get_for_update(team_id)
            if team is None:
                raise errors.NotFound('team not found')
            if team.status == TeamStatus.LOCKED.value:
                raise errors.TeamLocked()
            if not self.students.is_member(principal.id, team.id):
                raise errors.NotMember()
            candidate = self.students.get(candidate_id)
            if candidate is None or candidate.team_id != team.id:
                raise errors.InvalidCandidate()
            self.votes.upsert(team.id, principal.id, candidate.id)
            votes = self.votes.tally(team.id, candidate.id)
            total = self.students.count_members(team.id)
            if votes * 2 > total:
                team.leader_id = candidate.id
                if team.status == TeamStatus.VOTING.value:
                    team.status = TeamStatus.ACTIVE.value
                _touch(team)
                self.session.add(team)
                self.session.flush()
                result = {
                    'status': 'leader_chosen',
                    'votes': votes,
                    'total_members': total,
                    'leader_id': candidate.id,
                    'leader_name': candidate.full_name,
                }
            else:
                result = {'status': 'voted', 'votes': votes, 'total_members': total}
        _log('vote_cast', team_id=team_id, voter_id=principal.id, candidate_id=candidate_id, votes=votes, total=total, outcome=result['status'])
        if result['status'] == 'leader_chosen':
            self.dispatcher.notify_broadcast(notifications.LEADER_CHOSEN, {'team_id': team_id, 'leader_id': candidate_id})
        return result

    def vote_results(self, principal: Principal, team_id: int) -> dict:
        """List standing votes; students may only see their own team."""
        if policy.is_lecturer(principal):
            raise errors.Forbidden("you don't have access to view this team's votes")
        with atomic(self.session):
            if not policy.is_admin(principal):
                student = self.students.get(principal.id)
                if student is None or student.team_id != team_id:
                    raise errors.Forbidden("you don't have access to view this team's votes")
            team = self.teams.get(team_id)
            if team is None:
                raise errors.NotFound('team not found')
            votes = [
                {
                    'voter_id': vote.voter_id,
                    'voter_name': voter_name,
                    'candidate_id': vote.candidate_id,
                    'candidate_name': candidate_name,
                }
                for vote, voter_name, candidate_name in self.votes.list_for_team(team_id)
            ]
            return {
                'team_id': team_id,
                'total_votes': len(votes),
                'votes': votes,
                'tally': self.votes.tallies(team_id),
            }


class MentorshipService:
    """Single-outstanding-request protocol between teams and lecturers."""
    def __init__(self, session: Session, dispatcher: Optional[notifications.NotificationDispatcher] = None):
        self.session = session
        self.dispatcher = dispatcher or notifications.LoggingDispatcher()
        self.teams = repositories.TeamRepository(session)
        self.lecturers = repositories.LecturerRepository(session)
        self.requests = repositories.MentorshipRequestRepository(session)

    @staticmethod
    def _record(request: models.MentorshipRequest, team_name: Optional[str], leader_name: Optional[str]) -> dict:
        return {
            'id': request.id,
            'team_id': request.team_id,
            'team_name': team_name,
            'leader_name': leader_name,
            'lecturer_id': request.lecturer_id,
            'status': request.status,
            'created_at': request.created_at,
            'updated_at': request.updated_at,
        }

    def list_lecturers(self) -> list:
        with atomic(self.session):
            return [
                {'id': l.id, 'full_name': l.full_name, 'email': l.email, 'department': l.department}
                for l in self.lecturers.list_all()
            ]

    def send_request(self, principal: Principal, team_id: int, lecturer_id: str) -> dict:
        """Ask a lecturer to mentor the caller's team.

        Fails when the team already has a mentor or any request of the
        team is still pending.
        """
        policy.require_student(principal)
        with atomic(self.session):
            team = self.teams.get_for_update(team_id)
            if team is None:
                raise errors.NotFound('team not found')
            policy.require_team_leader(self.session, principal, team_id)
            if team.status == TeamStatus.LOCKED.value:
                raise errors.TeamLocked()
            if team.mentor_id:
                mentor = self.lecturers.get(team.mentor_id)
                mentor_name = mentor.full_name if mentor else team.mentor_id
                raise errors.AlreadyMentored(f'team already has a mentor: {mentor_name}')
            lecturer = self.lecturers.get(lecturer_id)
            if lecturer is None:
                raise errors.NotFound('lecturer not found')
            if self.requests.get_pending_for_team(team.id) is not None:
                raise errors.RequestPending()
            try:
                request = self.requests.create(models.MentorshipRequest(
                    team_id=team.id,
                    lecturer_id=lecturer.id,
                    status=RequestStatus.PENDING.value,
                ))
            except IntegrityError as exc:
                raise errors.RequestPending() from exc
            leader = repositories.StudentRepository(self.session).get(principal.id)
            record = self._record(request, team.name, leader.full_name if leader else None)
        _log('mentorship_requested', request_id=record['id'], team_id=team_id, lecturer_id=lecturer_id)
        self.dispatcher.notify_principal(lecturer_id, notifications.MENTORSHIP_REQUESTED, record)
        return record

    def list_requests(self, principal: Principal) -> list:
        """Requests addressed to the calling lecturer, newest first."""
        policy.require_lecturer(principal)
        with atomic(self.session):
            return [
                self._record(request, team_name, leader_name)
                for request, team_name, leader_name in self.requests.list_for_lecturer(principal.id)
            ]

    def respond_request(self, principal: Principal, request_id: int, action: str) -> dict:
        """Accept or reject a pending request addressed to the caller.

        Accepting assigns the lecturer as the team's mentor. The team
        leader is notified of the decision after commit.
        """
        policy.require_lecturer(principal)
        if action not in ('accept', 'reject'):
            raise errors.InvalidAction()
        with atomic(self.session):
            request = self.requests.get(request_id)
            if request is None or request.lecturer_id != principal.id:
                raise errors.RequestNotFound()
            team = self.teams.get_for_update(request.team_id)
            request = self.requests.get_pending_for_lecturer(request_id, principal.id)
            if request is None or team is None:
                raise errors.RequestNotFound()
            lecturer = self.lecturers.get(principal.id)
            lecturer_name = lecturer.full_name if lecturer else principal.id
            request.status = RequestStatus.ACCEPTED.value if action == 'accept' else RequestStatus.REJECTED.value
            _touch(request)
            self.session.add(request)
            if action == 'accept':
                team.mentor_id = principal.id
                _touch(team)
                self.session.add(team)
            self.session.flush()
            _, team_name, leader_name = self.requests.get_detail(request_id)
            record = self._record(request, team_name, leader_name)
            leader_id = team.leader_id
            if action == 'accept':
                message = f'Lecturer {lecturer_name} accepted to mentor team "{team.name}".'
            else:
                message = f'Lecturer {lecturer_name} declined to mentor team "{team.name}".'
            payload = {
                'team_id': team.id,
                'lecturer_id': principal.id,
                'lecturer_name': lecturer_name,
                'status': request.status,
                'message': message,
                'timestamp': models.utcnow().isoformat(),
            }
        _log('mentorship_responded', request_id=request_id, lecturer_id=principal.id, status=record['status'])
        if leader_id:
            self.dispatcher.notify_principal(leader_id, notifications.MENTOR_RESPONSE, payload)
        return record


class LecturerAdminService:
    """Admin management of lecturer accounts."""
    def __init__(self, session: Session):
        self.session = session
        self.lecturers = repositories.LecturerRepository(session)
        self.students = repositories.StudentRepository(session)

    @staticmethod
    def _record(lecturer: models.Lecturer) -> dict:
        return {
            'id': lecturer.id,
            'full_name': lecturer.full_name,
            'email': lecturer.email,
            'department': lecturer.department,
            'role': Role.LECTURER.value,
            'created_at': lecturer.created_at,
            'updated_at': lecturer.updated_at,
        }

    def _email_in_use(self, email: str, except_id: Optional[str] = None) -> bool:
        lecturer = self.lecturers.get_by_email(email)
        if lecturer is not None and lecturer.id != except_id:
            return True
        return self.students.get_by_email(email) is not None

    def create_lecturer(self, principal: Principal, lecturer_id: str, full_name: str, email: str,
                        password: str, department: Optional[str] = None) -> dict:
        policy.require_admin(principal)
        lecturer_id = (lecturer_id or '').strip()
        email = (email or '').strip().lower()
        if not lecturer_id or not full_name or not email or not password:
            raise errors.InvalidInput('id, full_name, email and password are required')
        with atomic(self.session):
            if self._email_in_use(email):
                raise errors.EmailTaken()
            if self.lecturers.get(lecturer_id):
                raise errors.IdTaken('lecturer id already exists')
            lecturer = self.lecturers.create(models.Lecturer(
                id=lecturer_id,
                full_name=full_name.strip(),
                email=email,
                password_hash=PWD_CTX.hash(password),
                department=department,
            ))
            out = self._record(lecturer)
        _log('lecturer_created', lecturer_id=lecturer_id, by=principal.id)
        return out

    def list_lecturers(self, principal: Principal) -> list:
        policy.require_admin(principal)
        with atomic(self.session):
            return [self._record(l) for l in self.lecturers.list_all()]

    def update_lecturer(self, principal: Principal, lecturer_id: str, full_name: Optional[str] = None,
                        email: Optional[str] = None, password: Optional[str] = None,
                        department: Optional[str] = None) -> dict:
        policy.require_admin(principal)
        if not any((full_name, email, password, department)):
            raise errors.InvalidInput('no fields to update')
        with atomic(self.session):
            lecturer = self.lecturers.get(lecturer_id)
            if lecturer is None:
                raise errors.NotFound('lecturer not found')
            if full_name:
                lecturer.full_name = full_name.strip()
            if email:
                email = email.strip().lower()
                if self._email_in_use(email, except_id=lecturer_id):
                    raise errors.EmailTaken()
                lecturer.email = email
            if password:
                lecturer.password_hash = PWD_CTX.hash(password)
            if department:
                lecturer.department = department
            _touch(lecturer)
            self.session.add(lecturer)
            self.session.flush()
            out = self._record(lecturer)
        _log('lecturer_updated', lecturer_id=lecturer_id, by=principal.id)
        return out

    def delete_lecturer(self, principal: Principal, lecturer_id: str) -> None:
        """Delete a lecturer, their requests and any mentor assignments."""
        policy.require_admin(principal)
        with atomic(self.session):
            lecturer = self.lecturers.get(lecturer_id)
            if lecturer is None:
                raise errors.NotFound('lecturer not found')
            for team, _ in repositories.TeamRepository(self.session).list_with_counts():
                if team.mentor_id == lecturer_id:
                    team.mentor_id = None
                    _touch(team)
                    self.session.add(team)
            requests = repositories.MentorshipRequestRepository(self.session)
            for request, _, _ in requests.list_for_lecturer(lecturer_id):
                self.session.delete(request)
            self.session.flush()
            self.lecturers.delete(lecturer)
        _log('lecturer_deleted', lecturer_id=lecturer_id, by=principal.id)


class TeamAdminService:
    """Administrative team actions: lock/unlock and forced deletion."""
    def __init__(self, session: Session, dispatcher: Optional[notifications.NotificationDispatcher] = None):
        self.session = session
        self.dispatcher = dispatcher or notifications.LoggingDispatcher()
        self.teams = repositories.TeamRepository(session)
        self.students = repositories.StudentRepository(session)

    def set_status(self, principal: Principal, team_id: int, status: str) -> dict:
        policy.require_admin(principal)
        valid = {s.value for s in TeamStatus}
        if status not in valid:
            raise errors.InvalidInput(f"status must be one of {', '.join(sorted(valid))}")
        with atomic(self.session):
            team = self.teams.get_for_update(team_id)
            if team is None:
                raise errors.NotFound('team not found')
            team.status = status
            _touch(team)
            self.session.add(team)
            self.session.flush()
            snapshot = team_snapshot(self.session, team)
        _log('team_status_set', team_id=team_id, status=status, by=principal.id)
        self.dispatcher.notify_broadcast(notifications.TEAM_UPDATED, snapshot)
        return snapshot

    def delete_team(self, principal: Principal, team_id: int) -> None:
        policy.require_admin(principal)
        with atomic(self.session):
            team = self.teams.get_for_update(team_id)
            if team is None:
                raise errors.NotFound('team not found')
            for member in self.students.list_members(team.id):
                member.team_id = None
                self.session.add(member)
            self.session.flush()
            self.teams.delete(team)
        _log('team_deleted', team_id=team_id, by=principal.id)
        self.dispatcher.notify_broadcast(notifications.TEAM_DELETED, {'id': team_id})


class PostService:
    """Posts and comments; only the author or an admin may modify them."""
    def __init__(self, session: Session, dispatcher: Optional[notifications.NotificationDispatcher] = None):
        self.session = session
        self.dispatcher = dispatcher or notifications.LoggingDispatcher()
        self.posts = repositories.PostRepository(session)

    def _author_name(self, author_id: str, author_role: str) -> Optional[str]:
        if author_role == Role.LECTURER.value:
            author = repositories.LecturerRepository(self.session).get(author_id)
        else:
            author = repositories.StudentRepository(self.session).get(author_id)
        return author.full_name if author else None

    def _post_record(self, post: models.Post) -> dict:
        return {
            'id': post.id,
            'author_id': post.author_id,
            'author_role': post.author_role,
            'author_name': self._author_name(post.author_id, post.author_role),
            'title': post.title,
            'content': post.content,
            'created_at': post.created_at,
            'updated_at': post.updated_at,
        }

    def _comment_record(self, comment: models.Comment) -> dict:
        return {
            'id': comment.id,
            'post_id': comment.post_id,
            'author_id': comment.author_id,
            'author_role': comment.author_role,
            'author_name': self._author_name(comment.author_id, comment.author_role),
            'content': comment.content,
            'created_at': comment.created_at,
        }

    def _get_post(self, post_id: int) -> models.Post:
        post = self.posts.get(post_id)
        if post is None:
            raise errors.NotFound('post not found')
        return post

    def create_post(self, principal: Principal, title: str, content: str) -> dict:
        if not title or not content:
            raise errors.InvalidInput('title and content required')
        with atomic(self.session):
            post = self.posts.create(models.Post(
                author_id=principal.id, author_role=principal.role, title=title, content=content,
            ))
            record = self._post_record(post)
        self.dispatcher.notify_broadcast(notifications.POST_CREATED, record)
        return record

    def list_posts(self) -> list:
        with atomic(self.session):
            return [self._post_record(p) for p in self.posts.list_all()]

    def update_post(self, principal: Principal, post_id: int, title: Optional[str], content: Optional[str]) -> dict:
        with atomic(self.session):
            post = self._get_post(post_id)
            if not policy.can_modify_content(principal, post.author_id):
                raise errors.Forbidden()
            if title:
                post.title = title
            if content:
                post.content = content
            _touch(post)
            self.session.add(post)
            self.session.flush()
            record = self._post_record(post)
        self.dispatcher.notify_broadcast(notifications.POST_UPDATED, record)
        return record

    def delete_post(self, principal: Principal, post_id: int) -> None:
        with atomic(self.session):
            post = self._get_post(post_id)
            if not policy.can_modify_content(principal, post.author_id):
                raise errors.Forbidden()
            self.posts.delete(post)
        self.dispatcher.notify_broadcast(notifications.POST_DELETED, {'id': post_id})

    def add_comment(self, principal: Principal, post_id: int, content: str) -> dict:
        if not content:
            raise errors.InvalidInput('content required')
        with atomic(self.session):
            self._get_post(post_id)
            comment = self.posts.add_comment(models.Comment(
                post_id=post_id, author_id=principal.id, author_role=principal.role, content=content,
            ))
            record = self._comment_record(comment)
        self.dispatcher.notify_broadcast(notifications.COMMENT_CREATED, record)
        return record

    def list_comments(self, post_id: int) -> list:
        with atomic(self.session):
            self._get_post(post_id)
            return [self._comment_record(c) for c in self.posts.list_comments(post_id)]

    def delete_comment(self, principal: Principal, post_id: int, comment_id: int) -> None:
        with atomic(self.session):
            comment = self.posts.get_comment(comment_id)
            if comment is None or comment.post_id != post_id:
                raise errors.NotFound('comment not found')
            if not policy.can_modify_content(principal, comment.author_id):
                raise errors.Forbidden()
            self.posts.delete_comment(comment)
        self.dispatcher.notify_broadcast(notifications.COMMENT_DELETED, {'post_id': post_id, 'comment_id': comment_id})
