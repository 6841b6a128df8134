import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from . import __version__, audit, database, eligibility, elections, ledger, tally, voters
from .audit import AuditActionType, DatabaseAuditSink
from .config import get_settings
from .database import get_db
from .errors import NotFound, PermissionDenied, ResultsUnavailable, VotingError
from .identity import (
    Identity,
    generate_api_token,
    get_current_identity,
    require_admin,
    require_student,
)
from .schemas import (
    BallotSubmission,
    ElectionCreate,
    ElectionUpdate,
    LoginRequest,
    VoterCreate,
)
from .voting import VoteSubmissionService

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init_db()
    yield


# FastAPI app
app = FastAPI(title="Campus Online Voting System", version=__version__, lifespan=lifespan)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VotingError)
async def voting_error_handler(request: Request, exc: VotingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Dependencies
@lru_cache()
def get_audit_sink() -> DatabaseAuditSink:
    return DatabaseAuditSink(database.SessionLocal)


@lru_cache()
def get_sealer():
    return ledger.get_sealer(get_settings())


@lru_cache()
def get_voting_service() -> VoteSubmissionService:
    config = get_settings()
    return VoteSubmissionService(
        database.SessionLocal,
        audit_sink=get_audit_sink(),
        sealer=get_sealer(),
        require_all_positions=config.require_all_positions,
    )


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# API Endpoints

@app.get("/")
async def root():
    return {"message": "Campus Online Voting System API", "version": __version__}


@app.get("/api/ping")
async def ping():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# Auth Endpoints
@app.post("/api/auth/signup", status_code=201)
def signup(
    data: VoterCreate,
    request: Request,
    db: Session = Depends(get_db),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    """Self-service registration (students only)"""
    if data.role != "student":
        raise PermissionDenied("Admin accounts cannot be created through signup")
    voter = voters.create_voter(db, data)
    sink.emit(AuditActionType.SIGNUP, voter.student_id, ip_address=client_ip(request))
    return {"user": voters.serialize_voter(db, voter), "token": generate_api_token(voter)}


@app.post("/api/auth/login")
def login(
    credentials: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    voter = voters.authenticate(db, credentials.student_id, credentials.password, credentials.role)
    sink.emit(AuditActionType.LOGIN, voter.student_id, ip_address=client_ip(request))
    return {"user": voters.serialize_voter(db, voter), "token": generate_api_token(voter)}


@app.get("/api/auth/me")
def me(identity: Identity = Depends(get_current_identity), db: Session = Depends(get_db)):
    voter = voters.get_voter(db, identity.voter_id)
    if voter is None:
        raise NotFound("User not found")
    return {"user": voters.serialize_voter(db, voter)}


# Election Endpoints
@app.get("/api/elections")
def get_elections(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """All elections; students also get their voting status"""
    result = []
    voted = eligibility.voted_elections(db, identity.voter_id) if not identity.is_admin else {}
    for election in elections.list_elections(db):
        data = elections.serialize_election(election, include_creator=identity.is_admin)
        if not identity.is_admin:
            data["has_voted"] = election.id in voted
            data["voted_positions"] = voted.get(election.id, [])
        result.append(data)
    return result


@app.get("/api/elections/{election_id}")
def get_election(
    election_id: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    election = elections.require_election(db, election_id)
    return elections.serialize_election(election, include_creator=identity.is_admin)


@app.post("/api/elections", status_code=201)
def create_election(
    data: ElectionCreate,
    request: Request,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    """Create a new election (Admin only)"""
    election = elections.create_election(db, data, admin.voter_id)
    sink.emit(
        AuditActionType.CREATE_ELECTION,
        admin.voter_id,
        election_id=election.id,
        details={"title": election.title, "positions": len(election.positions)},
        ip_address=client_ip(request),
    )
    return elections.serialize_election(election)


@app.put("/api/elections/{election_id}")
def update_election(
    election_id: str,
    updates: ElectionUpdate,
    request: Request,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    election = elections.update_election(db, election_id, updates)
    sink.emit(
        AuditActionType.UPDATE_ELECTION,
        admin.voter_id,
        election_id=election.id,
        details={"fields": sorted(updates.model_dump(exclude_unset=True))},
        ip_address=client_ip(request),
    )
    return elections.serialize_election(election)


@app.delete("/api/elections/{election_id}")
def delete_election(
    election_id: str,
    request: Request,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    elections.delete_election(db, election_id)
    sink.emit(AuditActionType.DELETE_ELECTION, admin.voter_id, election_id=election_id,
              ip_address=client_ip(request))
    return {"message": "Election deleted successfully"}


# Voting Endpoints
@app.post("/api/elections/{election_id}/vote")
def submit_vote(
    election_id: str,
    ballot: BallotSubmission,
    request: Request,
    student: Identity = Depends(require_student),
    service: VoteSubmissionService = Depends(get_voting_service),
):
    """Submit a ballot for the authenticated student"""
    receipt = service.submit_vote(
        election_id,
        student.voter_id,
        ballot.votes,
        origin=client_ip(request),
    )
    return {
        "message": "Vote submitted successfully",
        "vote_id": receipt.vote_id,
        "positions": receipt.positions,
        "has_voted": True,
        "submitted_at": receipt.submitted_at.isoformat(),
        "vote_hash": receipt.vote_hash,
    }


@app.get("/api/elections/{election_id}/vote-status")
def vote_status(
    election_id: str,
    student: Identity = Depends(require_student),
    db: Session = Depends(get_db),
):
    election = elections.require_election(db, election_id)
    positions = eligibility.voted_positions(db, student.voter_id, election.id)
    return {
        "has_voted": eligibility.has_voted(db, student.voter_id, election.id),
        "voted_positions": positions,
    }


@app.get("/api/votes/{vote_id}/verify")
def verify_vote(
    vote_id: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Verify that a stored ballot is intact"""
    record = ledger.get_record(db, vote_id)
    if record is None or (record.voter_id != identity.voter_id and not identity.is_admin):
        raise NotFound("Vote not found")
    intact = ledger.verify_record(record, get_sealer())
    return {
        "status": "verified",
        "vote_id": record.id,
        "election_id": record.election_id,
        "submitted_at": record.submitted_at.isoformat(),
        "integrity_check": "passed" if intact else "failed",
    }


def load_or_compute_results(db: Session, election_id: str):
    results = tally.get_results(db, election_id)
    if results is None:
        results = tally.recompute_election(db, election_id, get_sealer())
    return results


# Results and Analytics
@app.get("/api/elections/{election_id}/results")
def get_election_results(
    election_id: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Results; students only see them once voting has closed"""
    election = elections.require_election(db, election_id)
    if not identity.is_admin and elections.election_status(election) != "closed":
        raise ResultsUnavailable("Results not available until election ends", election_id=election.id)
    return load_or_compute_results(db, election.id)


# Admin Endpoints
@app.get("/api/admin/users")
def get_users(admin: Identity = Depends(require_admin), db: Session = Depends(get_db)):
    return [voters.serialize_voter(db, v) for v in voters.list_voters(db)]


@app.post("/api/admin/users", status_code=201)
def create_user(
    data: VoterCreate,
    request: Request,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    voter = voters.create_voter(db, data)
    sink.emit(AuditActionType.CREATE_USER, admin.voter_id,
              details={"student_id": voter.student_id, "role": voter.role},
              ip_address=client_ip(request))
    return voters.serialize_voter(db, voter)


@app.get("/api/admin/audit-logs")
def get_audit_logs(
    limit: int = 100,
    election_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Get audit logs with optional filtering"""
    logs = audit.get_audit_logs(db, limit=limit, election_id=election_id, actor_id=actor_id)
    return [audit.serialize_audit_log(log) for log in logs]


@app.get("/api/admin/elections/{election_id}/results")
def get_admin_results(
    election_id: str,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    election = elections.require_election(db, election_id)
    return load_or_compute_results(db, election.id)


@app.post("/api/admin/elections/{election_id}/recompute-stats")
def recompute_stats(
    election_id: str,
    request: Request,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    result = tally.recompute_election(db, election_id, get_sealer())
    sink.emit(AuditActionType.RECOMPUTE_STATS, admin.voter_id, election_id=result.election_id,
              details={"total_votes": result.total_votes}, ip_address=client_ip(request))
    return {"election_id": result.election_id, "total_votes": result.total_votes}


@app.post("/api/admin/elections/recompute-all-stats")
def recompute_all_stats(
    request: Request,
    admin: Identity = Depends(require_admin),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    report = tally.recompute_all(database.SessionLocal, get_sealer())
    sink.emit(AuditActionType.RECOMPUTE_ALL_STATS, admin.voter_id,
              details={"recomputed": len(report.results), "failed": sorted(report.failures)},
              ip_address=client_ip(request))
    return {
        "message": "Recomputed all election stats",
        "results": {eid: r.total_votes for eid, r in report.results.items()},
        "failures": report.failures,
    }


@app.get("/api/admin/elections/{election_id}/export")
def export_results(
    election_id: str,
    request: Request,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    sink: DatabaseAuditSink = Depends(get_audit_sink),
):
    """Export election results as CSV"""
    election = elections.require_election(db, election_id)
    results = load_or_compute_results(db, election.id)
    sink.emit(AuditActionType.EXPORT_RESULTS, admin.voter_id, election_id=election.id,
              ip_address=client_ip(request))
    return Response(
        content=tally.results_to_csv(results),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="results_{election.id}.csv"'},
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
