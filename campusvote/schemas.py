from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import as_utc


# Pydantic models
class CandidateCreate(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    bio: str = ""
    photo: Optional[str] = None
    goals: Optional[str] = None


class PositionCreate(BaseModel):
    id: Optional[str] = None
    title: str = Field(..., min_length=1)
    max_votes: int = Field(1, ge=1)
    candidates: List[CandidateCreate] = []


class ElectionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    start_date: datetime
    end_date: datetime
    positions: List[PositionCreate] = []

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_utc(cls, v):
        return as_utc(v)


class ElectionUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    positions: Optional[List[PositionCreate]] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_utc(cls, v):
        return as_utc(v) if v is not None else v


class BallotSubmission(BaseModel):
    votes: Dict[str, str]  # position_id: candidate_id


class VoteReceipt(BaseModel):
    vote_id: str
    election_id: str
    positions: List[str]
    submitted_at: datetime
    vote_hash: str


class VoterCreate(BaseModel):
    student_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Literal["student", "admin"] = "student"


class LoginRequest(BaseModel):
    student_id: str
    password: str
    role: Optional[Literal["student", "admin"]] = None


class CandidateTally(BaseModel):
    candidate_id: str
    candidate_name: str
    vote_count: int
    percentage: float


class PositionTally(BaseModel):
    position_id: str
    position_title: str
    total_votes: int
    candidates: List[CandidateTally]
    # Candidate ids by count, ties in ballot order
    ranking: List[str]
    winner: Optional[str] = None


class TallyResult(BaseModel):
    election_id: str
    title: str
    total_votes: int
    eligible_voters: int
    results: List[PositionTally]
    generated_at: datetime


class BatchTallyReport(BaseModel):
    results: Dict[str, TallyResult] = {}
    failures: Dict[str, str] = {}
