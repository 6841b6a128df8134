"""Named failure conditions of the voting core.

Every error carries a stable ``code`` that API clients switch on, the HTTP
status the API answers with, and the audit action recorded when the error
ends a ballot submission.
"""
from typing import Any, Dict, Optional


class VotingError(Exception):
    code = "error"
    status_code = 400
    audit_action = "VOTE_REJECTED"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": self.code, "detail": self.message}
        if self.context:
            data.update(self.context)
        return data


class NotFound(VotingError):
    code = "not_found"
    status_code = 404
    audit_action = "VOTE_ELECTION_NOT_FOUND"


class VotingClosed(VotingError):
    code = "voting_closed"
    status_code = 400
    audit_action = "VOTE_CLOSED"


class AlreadyVoted(VotingError):
    code = "already_voted"
    status_code = 409
    audit_action = "VOTE_ALREADY_CAST"


class InvalidSelection(VotingError):
    code = "invalid_selection"
    status_code = 422
    audit_action = "VOTE_INVALID_SELECTION"

    def __init__(self, message: str, position_id: Optional[str] = None,
                 candidate_id: Optional[str] = None, **context: Any):
        if position_id is not None:
            context["position_id"] = position_id
        if candidate_id is not None:
            context["candidate_id"] = candidate_id
        super().__init__(message, **context)
        self.position_id = position_id
        self.candidate_id = candidate_id


class ConflictingState(VotingError):
    code = "conflicting_state"
    status_code = 409
    audit_action = "VOTE_CONFLICT"


class StorageFailure(VotingError):
    code = "storage_failure"
    status_code = 503
    audit_action = "VOTE_STORAGE_FAILURE"


class CorruptRecord(VotingError):
    code = "corrupt_record"
    status_code = 500


class InvalidElection(VotingError):
    code = "invalid_election"
    status_code = 422


class AuthenticationError(VotingError):
    code = "unauthorized"
    status_code = 401


class PermissionDenied(VotingError):
    code = "forbidden"
    status_code = 403


class DuplicateUser(VotingError):
    code = "duplicate_user"
    status_code = 409


class ResultsUnavailable(VotingError):
    code = "results_unavailable"
    status_code = 403
