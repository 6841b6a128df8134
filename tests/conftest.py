import os
import sys
from datetime import datetime

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
from campusvote import database, elections, voters
from campusvote.schemas import CandidateCreate, ElectionCreate, PositionCreate, VoterCreate


START = datetime(2025, 3, 1, 9, 0, 0)
END = datetime(2025, 3, 8, 17, 0, 0)
DURING = datetime(2025, 3, 4, 12, 0, 0)


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, action_type, actor_id, election_id=None, details=None, ip_address=None):
        self.events.append({
            "action": getattr(action_type, "value", action_type),
            "actor_id": actor_id,
            "election_id": election_id,
            "details": details,
        })


@pytest.fixture
def session_factory(tmp_path):
    engine = database.configure(f"sqlite:///{tmp_path / 'test.db'}")
    database.init_db()
    yield database.SessionLocal
    engine.dispose()


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


def ballot_definition(title="Student Council", start=START, end=END):
    return ElectionCreate(
        title=title,
        description="Annual election",
        start_date=start,
        end_date=end,
        positions=[
            PositionCreate(id="P1", title="President", candidates=[
                CandidateCreate(id="A", name="Alice"),
                CandidateCreate(id="B", name="Bob"),
                CandidateCreate(id="C", name="Carol"),
            ]),
            PositionCreate(id="P2", title="Treasurer", candidates=[
                CandidateCreate(id="X", name="Xavier"),
                CandidateCreate(id="Y", name="Yara"),
            ]),
        ],
    )


@pytest.fixture
def make_election(session_factory):
    def _make(**kwargs):
        with session_factory() as session:
            return elections.create_election(session, ballot_definition(**kwargs), "admin").id
    return _make


@pytest.fixture
def election_id(make_election):
    return make_election()


@pytest.fixture
def make_student(session_factory):
    def _make(student_id, role="student"):
        with session_factory() as session:
            voters.create_voter(session, VoterCreate(
                student_id=student_id,
                name=f"Student {student_id}",
                email=f"{student_id}@student.university.edu",
                password="secret123",
                role=role,
            ))
        return student_id
    return _make
