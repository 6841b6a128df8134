"""Ballot submission.

A submission is checked in a fixed order (election exists, voting window,
not already voted, ballot refers to real positions and candidates) and then
the ledger append and the eligibility mark are committed together. The
already-voted check and the commit run under a lock held per
(voter, election); submissions for other keys proceed in parallel.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Hashable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import eligibility, elections, ledger, tally
from .audit import AuditActionType
from .errors import (
    AlreadyVoted,
    ConflictingState,
    InvalidSelection,
    StorageFailure,
    VotingClosed,
    VotingError,
)
from .models import Election, as_utc, utcnow
from .schemas import VoteReceipt

logger = logging.getLogger(__name__)


class KeyedLock:
    """One lock per key, dropped again when nobody holds or waits for it"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


def validate_selections(election: Election, selections: Dict[str, str],
                        require_all_positions: bool = False):
    """Check every selection refers to a position of the election and one of its candidates"""
    if not selections:
        raise InvalidSelection("Ballot contains no selections")

    for position_id, candidate_id in selections.items():
        position = elections.find_position(election, position_id)
        if position is None:
            raise InvalidSelection(f"Invalid position: {position_id}", position_id=position_id)
        if not any(c.candidate_id == candidate_id for c in position.candidates):
            raise InvalidSelection(
                f"Invalid candidate {candidate_id} for position {position_id}",
                position_id=position_id,
                candidate_id=candidate_id,
            )

    if require_all_positions:
        missing = [p.position_id for p in election.positions if p.position_id not in selections]
        if missing:
            raise InvalidSelection(
                "Ballot must include every position", missing_positions=missing
            )


class VoteSubmissionService:
    def __init__(self, session_factory, audit_sink=None, sealer=None,
                 require_all_positions: bool = False):
        self.session_factory = session_factory
        self.audit_sink = audit_sink
        self.sealer = sealer or ledger.PlaintextSealer()
        self.require_all_positions = require_all_positions
        self._locks = KeyedLock()

    def submit_vote(
        self,
        election_id: str,
        voter_id: str,
        selections: Dict[str, str],
        submitted_at: Optional[datetime] = None,
        origin: str = "unknown",
    ) -> VoteReceipt:
        """Cast a ballot; raises a VotingError subclass naming why it was refused"""
        submitted_at = as_utc(submitted_at) if submitted_at is not None else utcnow()
        selections = dict(selections)
        try:
            with self._locks.hold((voter_id, elections.canonical_election_id(election_id))):
                try:
                    receipt = self._submit(election_id, voter_id, selections, submitted_at, origin)
                except SQLAlchemyError as exc:
                    # Reads before the append, e.g. a locked SQLite file
                    logger.error("Vote lookup failed for %s in %s: %s", voter_id, election_id, exc)
                    raise StorageFailure("Vote could not be stored", election_id=election_id) from exc
        except VotingError as exc:
            logger.info("Vote by %s in %s refused: %s", voter_id, election_id, exc.message)
            self._audit(exc.audit_action, voter_id, election_id,
                        {"reason": exc.code, "message": exc.message}, origin)
            raise

        logger.info("Vote %s recorded for %s in %s", receipt.vote_id, voter_id, election_id)
        self._audit(AuditActionType.CAST_VOTE, voter_id, receipt.election_id,
                    {"vote_id": receipt.vote_id, "positions": receipt.positions}, origin)
        return receipt

    def _submit(self, election_id, voter_id, selections, submitted_at, origin) -> VoteReceipt:
        with self.session_factory() as db:
            election = elections.require_election(db, election_id)

            if submitted_at < election.start_date or submitted_at > election.end_date:
                raise VotingClosed(
                    "Voting is not currently allowed for this election",
                    election_id=election.id,
                )

            if eligibility.has_voted(db, voter_id, election.id):
                raise AlreadyVoted("You have already voted in this election",
                                   election_id=election.id)

            validate_selections(election, selections, self.require_all_positions)
            position_ids = list(selections)

            try:
                record = ledger.append(db, election.id, voter_id, selections,
                                       submitted_at, origin, self.sealer)
                eligibility.mark_voted(db, voter_id, election.id, position_ids)
                tally.discard_results(db, election.id)
                db.commit()
            except IntegrityError as exc:
                # Another process won the race for this (voter, election)
                db.rollback()
                raise AlreadyVoted("You have already voted in this election",
                                   election_id=election.id) from exc
            except ConflictingState:
                db.rollback()
                raise
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Vote storage failed for %s in %s: %s", voter_id, election.id, exc)
                raise StorageFailure("Vote could not be stored", election_id=election.id) from exc

            return VoteReceipt(
                vote_id=record.id,
                election_id=election.id,
                positions=position_ids,
                submitted_at=record.submitted_at,
                vote_hash=record.vote_hash,
            )

    def has_voted(self, voter_id: str, election_id: str) -> bool:
        with self.session_factory() as db:
            election = elections.get_election(db, election_id)
            return eligibility.has_voted(db, voter_id, election.id if election else election_id)

    def _audit(self, action, voter_id, election_id, details, origin):
        if self.audit_sink is None:
            return
        try:
            self.audit_sink.emit(action, voter_id, election_id=election_id,
                                 details=details, ip_address=origin)
        except Exception:
            logger.exception("Audit sink failed for %s", action)
