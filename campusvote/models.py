from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    """Current time as a naive UTC datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC; naive input is taken as UTC"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Database Models
class Voter(Base):
    __tablename__ = "voters"

    student_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, default="student")  # student | admin
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class Election(Base):
    __tablename__ = "elections"

    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, default="")
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    positions = relationship(
        "Position",
        back_populates="election",
        cascade="all, delete-orphan",
        order_by="Position.sort_order",
    )


class Position(Base):
    __tablename__ = "positions"
    __table_args__ = (UniqueConstraint("election_id", "position_id"),)

    id = Column(Integer, primary_key=True, index=True)
    election_id = Column(String, ForeignKey("elections.id"), nullable=False)
    position_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    max_votes = Column(Integer, nullable=False, default=1)
    sort_order = Column(Integer, nullable=False, default=0)

    election = relationship("Election", back_populates="positions")
    candidates = relationship(
        "Candidate",
        back_populates="position",
        cascade="all, delete-orphan",
        order_by="Candidate.sort_order",
    )


class Candidate(Base):
    __tablename__ = "candidates"
    __table_args__ = (UniqueConstraint("position_pk", "candidate_id"),)

    id = Column(Integer, primary_key=True, index=True)
    position_pk = Column(Integer, ForeignKey("positions.id"), nullable=False)
    candidate_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    bio = Column(String, default="")
    photo = Column(String)
    goals = Column(String)
    sort_order = Column(Integer, nullable=False, default=0)

    position = relationship("Position", back_populates="candidates")


class VoteRecord(Base):
    """Append-only ballot record; one per (voter, election)"""

    __tablename__ = "vote_records"
    __table_args__ = (UniqueConstraint("voter_id", "election_id"),)

    id = Column(String, primary_key=True, index=True)
    election_id = Column(String, ForeignKey("elections.id"), nullable=False, index=True)
    voter_id = Column(String, nullable=False, index=True)
    payload = Column(Text, nullable=False)  # sealed {position_id: candidate_id}
    sealing = Column(String, nullable=False)
    vote_hash = Column(String, nullable=False)  # integrity hash over plaintext ballot
    submitted_at = Column(DateTime, nullable=False)
    origin = Column(String, default="unknown")


class VotedElection(Base):
    """Eligibility ledger row: which positions a voter has voted for in an election"""

    __tablename__ = "voted_elections"
    __table_args__ = (UniqueConstraint("voter_id", "election_id"),)

    id = Column(Integer, primary_key=True, index=True)
    voter_id = Column(String, nullable=False, index=True)
    election_id = Column(String, nullable=False, index=True)
    position_ids = Column(JSON, nullable=False)
    marked_at = Column(DateTime, default=utcnow)


class ElectionResult(Base):
    """Last computed tally snapshot for an election"""

    __tablename__ = "election_results"

    election_id = Column(String, primary_key=True)
    payload = Column(JSON, nullable=False)
    generated_at = Column(DateTime, nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action_type = Column(String, nullable=False)
    actor_id = Column(String, nullable=False)
    election_id = Column(String, nullable=True, index=True)
    details = Column(JSON)
    timestamp = Column(DateTime, default=utcnow)
    ip_address = Column(String)
