"""Election store: CRUD over elections, their positions and candidates."""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from . import ledger
from .errors import InvalidElection, NotFound
from .models import Candidate, Election, ElectionResult, Position, as_utc, utcnow
from .schemas import ElectionCreate, ElectionUpdate, PositionCreate

logger = logging.getLogger(__name__)

ELECTION_PREFIX = "election_"


def generate_election_id() -> str:
    return f"{ELECTION_PREFIX}{uuid.uuid4()}"


def canonical_election_id(election_id: str) -> str:
    if election_id.startswith(ELECTION_PREFIX):
        return election_id
    return f"{ELECTION_PREFIX}{election_id}"


def _check_window(start_date: datetime, end_date: datetime):
    if start_date >= end_date:
        raise InvalidElection("Election start date must be before its end date")


def _build_positions(positions: Iterable[PositionCreate]) -> List[Position]:
    """Turn position payloads into ORM rows, assigning ids where missing"""
    built = []
    seen_positions = set()
    for p_index, pos in enumerate(positions):
        position_id = pos.id or str(uuid.uuid4())
        if position_id in seen_positions:
            raise InvalidElection(f"Duplicate position id: {position_id}", position_id=position_id)
        seen_positions.add(position_id)

        candidates = []
        seen_candidates = set()
        for c_index, cand in enumerate(pos.candidates):
            candidate_id = cand.id or str(uuid.uuid4())
            if candidate_id in seen_candidates:
                raise InvalidElection(
                    f"Duplicate candidate id {candidate_id} in position {position_id}",
                    position_id=position_id,
                    candidate_id=candidate_id,
                )
            seen_candidates.add(candidate_id)
            candidates.append(Candidate(
                candidate_id=candidate_id,
                name=cand.name,
                bio=cand.bio,
                photo=cand.photo,
                goals=cand.goals,
                sort_order=c_index,
            ))

        built.append(Position(
            position_id=position_id,
            title=pos.title,
            max_votes=pos.max_votes,
            sort_order=p_index,
            candidates=candidates,
        ))
    return built


def create_election(db: Session, data: ElectionCreate, created_by: str) -> Election:
    """Create a new election with its positions and candidates"""
    start_date, end_date = as_utc(data.start_date), as_utc(data.end_date)
    _check_window(start_date, end_date)

    election = Election(
        id=generate_election_id(),
        title=data.title,
        description=data.description,
        start_date=start_date,
        end_date=end_date,
        created_by=created_by,
        created_at=utcnow(),
        positions=_build_positions(data.positions),
    )
    db.add(election)
    db.commit()
    db.refresh(election)
    logger.info("Created election %s (%d positions)", election.id, len(election.positions))
    return election


def get_election(db: Session, election_id: str) -> Optional[Election]:
    # Both election_<id> and bare <id> are accepted
    election = db.get(Election, election_id)
    if election is None and not election_id.startswith(ELECTION_PREFIX):
        election = db.get(Election, f"{ELECTION_PREFIX}{election_id}")
    return election


def require_election(db: Session, election_id: str) -> Election:
    election = get_election(db, election_id)
    if election is None:
        raise NotFound(f"Election not found: {election_id}", election_id=election_id)
    return election


def election_exists(db: Session, election_id: str) -> bool:
    return get_election(db, election_id) is not None


def list_elections(db: Session) -> List[Election]:
    return db.query(Election).order_by(Election.created_at, Election.id).all()


def update_election(db: Session, election_id: str, updates: ElectionUpdate) -> Election:
    """Apply a partial update; the ballot structure is frozen once votes exist"""
    election = require_election(db, election_id)
    changes = updates.model_dump(exclude_unset=True)

    start_date = as_utc(changes.get("start_date") or election.start_date)
    end_date = as_utc(changes.get("end_date") or election.end_date)
    _check_window(start_date, end_date)

    if updates.positions is not None:
        if ledger.count_records(db, election.id):
            raise InvalidElection(
                "Positions cannot be changed after votes have been recorded",
                election_id=election.id,
            )
        new_positions = _build_positions(updates.positions)
        # Old rows go first so reused position ids don't collide
        election.positions = []
        db.flush()
        election.positions = new_positions

    for attr in ("title", "description"):
        if changes.get(attr) is not None:
            setattr(election, attr, changes[attr])
    election.start_date = start_date
    election.end_date = end_date

    db.commit()
    db.refresh(election)
    logger.info("Updated election %s: %s", election.id, sorted(changes))
    return election


def delete_election(db: Session, election_id: str):
    election = require_election(db, election_id)
    if ledger.count_records(db, election.id):
        raise InvalidElection(
            "Elections with recorded votes cannot be deleted", election_id=election.id
        )
    db.query(ElectionResult).filter(ElectionResult.election_id == election.id).delete()
    db.delete(election)
    db.commit()
    logger.info("Deleted election %s", election.id)


def election_status(election: Election, now: Optional[datetime] = None) -> str:
    """upcoming / active / closed, inclusive of both window bounds"""
    now = as_utc(now) if now is not None else utcnow()
    if now < election.start_date:
        return "upcoming"
    if now > election.end_date:
        return "closed"
    return "active"


def find_position(election: Election, position_id: str) -> Optional[Position]:
    for position in election.positions:
        if position.position_id == position_id:
            return position
    return None


def serialize_election(election: Election, include_creator: bool = True,
                       now: Optional[datetime] = None) -> Dict[str, Any]:
    data = {
        "id": election.id,
        "title": election.title,
        "description": election.description,
        "start_date": election.start_date.isoformat(),
        "end_date": election.end_date.isoformat(),
        "created_at": election.created_at.isoformat() if election.created_at else None,
        "status": election_status(election, now),
        "positions": [
            {
                "id": p.position_id,
                "title": p.title,
                "max_votes": p.max_votes,
                "candidates": [
                    {
                        "id": c.candidate_id,
                        "name": c.name,
                        "bio": c.bio,
                        "photo": c.photo,
                        "goals": c.goals,
                    }
                    for c in p.candidates
                ],
            }
            for p in election.positions
        ],
    }
    if include_creator:
        data["created_by"] = election.created_by
    return data
