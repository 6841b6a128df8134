"""Tally engine.

Results are always recomputed from the vote ledger. Stored snapshots are
a cache for the read endpoints and the CSV export, never a source of truth.
Recording a ballot discards the snapshot of its election.
"""
import csv
import io
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import elections, ledger, voters
from .errors import CorruptRecord, VotingError
from .models import ElectionResult, as_utc, utcnow
from .schemas import BatchTallyReport, CandidateTally, PositionTally, TallyResult

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Position",
    "Candidate",
    "Votes",
    "Percentage",
    "Election",
    "Total_Votes",
    "Eligible_Voters",
    "Generated_At",
]


def compute_tally(db: Session, election_id: str, sealer=None,
                  now: Optional[datetime] = None) -> TallyResult:
    """Count every ballot of an election per position and candidate"""
    election = elections.require_election(db, election_id)
    entries = ledger.records_for_election(db, election.id, sealer)

    counts = {
        p.position_id: {c.candidate_id: 0 for c in p.candidates}
        for p in election.positions
    }
    for entry in entries:
        for position_id, candidate_id in entry.selections.items():
            position_counts = counts.get(position_id)
            if position_counts is None or candidate_id not in position_counts:
                raise CorruptRecord(
                    f"Vote {entry.vote_id} refers to {position_id}/{candidate_id}, "
                    f"which is not on the ballot of {election.id}",
                    vote_id=entry.vote_id,
                )
            position_counts[candidate_id] += 1

    results = []
    for position in election.positions:
        position_counts = counts[position.position_id]
        position_total = sum(position_counts.values())
        candidates = [
            CandidateTally(
                candidate_id=c.candidate_id,
                candidate_name=c.name,
                vote_count=position_counts[c.candidate_id],
                percentage=(
                    position_counts[c.candidate_id] / position_total * 100
                    if position_total else 0.0
                ),
            )
            for c in position.candidates
        ]
        # sorted() is stable: tied candidates keep their ballot order
        ranking = [c.candidate_id for c in sorted(candidates, key=lambda c: -c.vote_count)]
        results.append(PositionTally(
            position_id=position.position_id,
            position_title=position.title,
            total_votes=position_total,
            candidates=candidates,
            ranking=ranking,
            winner=ranking[0] if position_total else None,
        ))

    return TallyResult(
        election_id=election.id,
        title=election.title,
        total_votes=len(entries),
        eligible_voters=voters.count_students(db),
        results=results,
        generated_at=as_utc(now) if now is not None else utcnow(),
    )


def save_results(db: Session, result: TallyResult):
    db.merge(ElectionResult(
        election_id=result.election_id,
        payload=result.model_dump(mode="json"),
        generated_at=result.generated_at,
    ))
    db.commit()


def discard_results(db: Session, election_id: str):
    """Drop the stored snapshot in the current transaction; the caller commits"""
    db.query(ElectionResult).filter(ElectionResult.election_id == election_id).delete(
        synchronize_session=False
    )


def get_results(db: Session, election_id: str) -> Optional[TallyResult]:
    """Last stored snapshot for an election, if one was computed"""
    election = elections.get_election(db, election_id)
    row = db.get(ElectionResult, election.id if election else election_id)
    if row is None:
        return None
    return TallyResult.model_validate(row.payload)


def recompute_election(db: Session, election_id: str, sealer=None) -> TallyResult:
    result = compute_tally(db, election_id, sealer)
    save_results(db, result)
    logger.info("Recomputed %s: %d votes", result.election_id, result.total_votes)
    return result


def recompute_all(session_factory, sealer=None) -> BatchTallyReport:
    """Recompute every election; one failing election doesn't stop the rest"""
    with session_factory() as db:
        election_ids = [e.id for e in elections.list_elections(db)]

    report = BatchTallyReport()
    for election_id in election_ids:
        with session_factory() as db:
            try:
                report.results[election_id] = recompute_election(db, election_id, sealer)
            except (VotingError, SQLAlchemyError, ValueError) as exc:
                db.rollback()
                logger.warning("Recompute failed for %s: %s", election_id, exc)
                report.failures[election_id] = str(exc)
    return report


def results_to_csv(result: TallyResult) -> str:
    """One row per candidate per position"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    generated_at = result.generated_at.isoformat()
    for position in result.results:
        for candidate in position.candidates:
            writer.writerow([
                position.position_title,
                candidate.candidate_name,
                candidate.vote_count,
                f"{candidate.percentage:.2f}",
                result.title,
                result.total_votes,
                result.eligible_voters,
                generated_at,
            ])
    return buffer.getvalue()
