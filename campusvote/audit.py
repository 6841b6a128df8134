import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from .models import AuditLog, utcnow

logger = logging.getLogger(__name__)


class AuditActionType(str, Enum):
    CAST_VOTE = "CAST_VOTE"
    VOTE_ELECTION_NOT_FOUND = "VOTE_ELECTION_NOT_FOUND"
    VOTE_CLOSED = "VOTE_CLOSED"
    VOTE_ALREADY_CAST = "VOTE_ALREADY_CAST"
    VOTE_INVALID_SELECTION = "VOTE_INVALID_SELECTION"
    VOTE_CONFLICT = "VOTE_CONFLICT"
    VOTE_STORAGE_FAILURE = "VOTE_STORAGE_FAILURE"
    VOTE_REJECTED = "VOTE_REJECTED"
    SIGNUP = "SIGNUP"
    LOGIN = "LOGIN"
    CREATE_USER = "CREATE_USER"
    CREATE_ELECTION = "CREATE_ELECTION"
    UPDATE_ELECTION = "UPDATE_ELECTION"
    DELETE_ELECTION = "DELETE_ELECTION"
    RECOMPUTE_STATS = "RECOMPUTE_STATS"
    RECOMPUTE_ALL_STATS = "RECOMPUTE_ALL_STATS"
    EXPORT_RESULTS = "EXPORT_RESULTS"


class DatabaseAuditSink:
    """Best-effort audit trail writer.

    Each event is written in its own session so that it never shares a
    transaction with the operation being audited. Delivery failures are
    logged and dropped.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def emit(
        self,
        action_type: Union[AuditActionType, str],
        actor_id: str,
        election_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ):
        action = action_type.value if isinstance(action_type, AuditActionType) else str(action_type)
        try:
            with self.session_factory() as db:
                db.add(AuditLog(
                    action_type=action,
                    actor_id=actor_id or "unknown",
                    election_id=election_id,
                    details=details or {},
                    timestamp=utcnow(),
                    ip_address=ip_address or "unknown",
                ))
                db.commit()
        except Exception:
            logger.exception("Audit event %s for %s was not recorded", action, actor_id)


def get_audit_logs(
    db: Session,
    limit: int = 100,
    election_id: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> List[AuditLog]:
    """Audit entries, newest first"""
    query = db.query(AuditLog)
    if election_id:
        query = query.filter(AuditLog.election_id == election_id)
    if actor_id:
        query = query.filter(AuditLog.actor_id == actor_id)
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()


def serialize_audit_log(log: AuditLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "action_type": log.action_type,
        "actor_id": log.actor_id,
        "election_id": log.election_id,
        "details": log.details,
        "timestamp": log.timestamp.isoformat(),
        "ip_address": log.ip_address,
    }
