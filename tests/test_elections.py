from datetime import timedelta

import pytest

from campusvote import elections, ledger
from campusvote.errors import InvalidElection, NotFound
from campusvote.schemas import CandidateCreate, ElectionUpdate, PositionCreate

from conftest import DURING, END, START, ballot_definition


def test_create_assigns_prefixed_id_and_keeps_order(db):
    election = elections.create_election(db, ballot_definition(), "admin")
    assert election.id.startswith("election_")
    assert election.created_by == "admin"
    assert [p.position_id for p in election.positions] == ["P1", "P2"]
    assert [c.candidate_id for c in election.positions[0].candidates] == ["A", "B", "C"]


def test_generated_ids_for_positions_and_candidates(db):
    data = ballot_definition()
    data.positions.append(PositionCreate(title="Secretary", candidates=[CandidateCreate(name="Sam")]))
    election = elections.create_election(db, data, "admin")
    extra = election.positions[2]
    assert extra.position_id
    assert extra.candidates[0].candidate_id


def test_window_must_be_ordered(db):
    with pytest.raises(InvalidElection):
        elections.create_election(db, ballot_definition(start=END, end=START), "admin")
    with pytest.raises(InvalidElection):
        elections.create_election(db, ballot_definition(start=START, end=START), "admin")


def test_duplicate_ids_are_rejected(db):
    data = ballot_definition()
    data.positions.append(PositionCreate(id="P1", title="Again"))
    with pytest.raises(InvalidElection):
        elections.create_election(db, data, "admin")

    data = ballot_definition()
    data.positions[1].candidates.append(CandidateCreate(id="X", name="Xander"))
    with pytest.raises(InvalidElection) as err:
        elections.create_election(db, data, "admin")
    assert err.value.context["position_id"] == "P2"


def test_lookup_accepts_bare_id(db, election_id):
    bare = election_id[len("election_"):]
    assert elections.get_election(db, bare).id == election_id
    assert elections.election_exists(db, election_id)
    assert not elections.election_exists(db, "election_missing")
    with pytest.raises(NotFound):
        elections.require_election(db, "missing")


def test_update_replaces_positions_before_voting(db, election_id):
    updated = elections.update_election(db, election_id, ElectionUpdate(
        title="Renamed",
        positions=[PositionCreate(id="P1", title="President", candidates=[
            CandidateCreate(id="B", name="Bob"),
            CandidateCreate(id="A", name="Alice"),
        ])],
    ))
    assert updated.title == "Renamed"
    assert [p.position_id for p in updated.positions] == ["P1"]
    assert [c.candidate_id for c in updated.positions[0].candidates] == ["B", "A"]


def test_update_rejects_inverted_window(db, election_id):
    with pytest.raises(InvalidElection):
        elections.update_election(db, election_id, ElectionUpdate(end_date=START - timedelta(days=1)))


def test_ballot_is_frozen_once_votes_exist(db, election_id):
    ledger.append(db, election_id, "s1", {"P1": "A"}, DURING, "127.0.0.1")
    db.commit()

    with pytest.raises(InvalidElection):
        elections.update_election(db, election_id, ElectionUpdate(positions=[]))
    with pytest.raises(InvalidElection):
        elections.delete_election(db, election_id)

    # Non-structural edits are still allowed
    assert elections.update_election(db, election_id, ElectionUpdate(description="x")).description == "x"


def test_delete_without_votes(db, election_id):
    elections.delete_election(db, election_id)
    assert elections.get_election(db, election_id) is None
    assert elections.list_elections(db) == []


def test_status_bounds_are_inclusive(db, election_id):
    election = elections.get_election(db, election_id)
    assert elections.election_status(election, START - timedelta(microseconds=1)) == "upcoming"
    assert elections.election_status(election, START) == "active"
    assert elections.election_status(election, END) == "active"
    assert elections.election_status(election, END + timedelta(milliseconds=1)) == "closed"


def test_serialize_hides_creator_on_request(db, election_id):
    election = elections.get_election(db, election_id)
    data = elections.serialize_election(election, include_creator=False, now=DURING)
    assert "created_by" not in data
    assert data["status"] == "active"
    assert data["positions"][1]["candidates"][1] == {
        "id": "Y", "name": "Yara", "bio": "", "photo": None, "goals": None,
    }
