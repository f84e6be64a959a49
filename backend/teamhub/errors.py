"""Domain error taxonomy.

Every failure a service can report is a `DomainError` subclass carrying a
stable machine-readable `kind` (the broad category, which decides the HTTP
status) and `code` (the precise condition), plus a human-readable message.
Domain errors are final; only `Transient` failures are safe to retry.
"""


class DomainError(Exception):
    """Base class for all errors reported to API callers."""
    kind = "internal"
    code = "Internal"
    default_message = "unexpected failure"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "code": self.code, "message": self.message}


class Unauthorized(DomainError):
    kind = "unauthorized"
    code = "Unauthorized"
    default_message = "authentication required"


class InvalidCredentials(Unauthorized):
    code = "InvalidCredentials"
    default_message = "invalid credentials"


class Forbidden(DomainError):
    kind = "forbidden"
    code = "Forbidden"
    default_message = "access denied"


class NotMember(Forbidden):
    code = "NotMember"
    default_message = "you are not a member of this team"


class NotTeamLeader(Forbidden):
    code = "NotTeamLeader"
    default_message = "only the team leader can do this"


class NotFound(DomainError):
    kind = "not_found"
    code = "NotFound"
    default_message = "not found"


class RequestNotFound(NotFound):
    code = "RequestNotFound"
    default_message = "request not found or you are not authorized"


class Conflict(DomainError):
    kind = "conflict"
    code = "Conflict"
    default_message = "conflicting state"


class AlreadyMember(Conflict):
    code = "AlreadyMember"
    default_message = "you already belong to a team"


class Full(Conflict):
    code = "Full"
    default_message = "team is full"


class TeamLocked(Conflict):
    code = "TeamLocked"
    default_message = "team is locked"


class SelfVote(Conflict):
    code = "SelfVote"
    default_message = "you cannot vote for yourself"


class InvalidCandidate(Conflict):
    code = "InvalidCandidate"
    default_message = "candidate is not a member of this team"


class AlreadyMentored(Conflict):
    code = "AlreadyMentored"
    default_message = "team already has a mentor"


class RequestPending(Conflict):
    code = "RequestPending"
    default_message = "team is already waiting for a lecturer response"


class EmailTaken(Conflict):
    code = "EmailTaken"
    default_message = "email already exists"


class IdTaken(Conflict):
    code = "IdTaken"
    default_message = "id already exists"


class InvalidInput(DomainError):
    kind = "invalid_input"
    code = "InvalidInput"
    default_message = "invalid input"


class InvalidAction(InvalidInput):
    code = "InvalidAction"
    default_message = "action must be 'accept' or 'reject'"


class Transient(DomainError):
    kind = "transient"
    code = "Transient"
    default_message = "storage temporarily unavailable, retry later"


class Internal(DomainError):
    pass


HTTP_STATUS = {
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "invalid_input": 400,
    "transient": 503,
    "internal": 500,
}


def http_status_for(err: DomainError) -> int:
    return HTTP_STATUS.get(err.kind, 500)
