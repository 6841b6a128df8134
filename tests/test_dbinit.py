import os
import sys

sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'db'))
import dbinit

from campusvote import elections, voters
from campusvote.voting import VoteSubmissionService


def test_seed_creates_usable_election(db, session_factory):
    admin, student, election = dbinit.seed_sample_data(db)
    assert admin.role == "admin"
    assert voters.verify_password(dbinit.SAMPLE_STUDENT.password, student.password_hash)
    assert elections.election_status(election) == "active"

    receipt = VoteSubmissionService(session_factory).submit_vote(
        election.id, student.student_id, {"president": "alice", "secretary": "dan"}
    )
    assert receipt.positions == ["president", "secretary"]


def test_init_database_resets_file(tmp_path):
    path = str(tmp_path / "fresh.db")
    assert dbinit.init_database(path, interactive=False)
    assert os.path.exists(path)
    # Second run replaces the file and seeds again
    assert dbinit.init_database(path, interactive=False)
