"""Voter eligibility ledger.

The single authority for "has this voter already voted in this election".
A mark lists the positions the voter filled and is never retracted.
"""
import logging
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

from .errors import ConflictingState
from .models import VotedElection, utcnow

logger = logging.getLogger(__name__)


def _get_mark(db: Session, voter_id: str, election_id: str):
    return (
        db.query(VotedElection)
        .filter(VotedElection.voter_id == voter_id, VotedElection.election_id == election_id)
        .first()
    )


def has_voted(db: Session, voter_id: str, election_id: str) -> bool:
    return _get_mark(db, voter_id, election_id) is not None


def voted_positions(db: Session, voter_id: str, election_id: str) -> List[str]:
    mark = _get_mark(db, voter_id, election_id)
    return list(mark.position_ids) if mark else []


def voted_elections(db: Session, voter_id: str) -> Dict[str, List[str]]:
    marks = db.query(VotedElection).filter(VotedElection.voter_id == voter_id).all()
    return {mark.election_id: list(mark.position_ids) for mark in marks}


def mark_voted(db: Session, voter_id: str, election_id: str, position_ids: Iterable[str]):
    """Record the positions a voter voted for; the caller commits.

    Marking the same positions again is a no-op. Marking a different,
    non-empty set for an already marked pair raises ConflictingState.
    """
    position_ids = list(dict.fromkeys(position_ids))
    mark = _get_mark(db, voter_id, election_id)
    if mark is not None:
        if not position_ids or set(position_ids) == set(mark.position_ids):
            return
        logger.warning(
            "Conflicting eligibility mark for %s in %s: %s vs %s",
            voter_id, election_id, mark.position_ids, position_ids,
        )
        raise ConflictingState(
            "Voter is already marked for a different set of positions",
            voter_id=voter_id,
            election_id=election_id,
        )

    db.add(VotedElection(
        voter_id=voter_id,
        election_id=election_id,
        position_ids=position_ids,
        marked_at=utcnow(),
    ))
    db.flush()
