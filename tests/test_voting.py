import threading
from datetime import timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from campusvote import eligibility, ledger, tally
from campusvote.audit import AuditActionType, DatabaseAuditSink, get_audit_logs
from campusvote.errors import (
    AlreadyVoted,
    InvalidSelection,
    NotFound,
    StorageFailure,
    VotingClosed,
)
from campusvote.voting import KeyedLock, VoteSubmissionService

from conftest import DURING, END, START, RecordingSink


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def service(session_factory, sink):
    return VoteSubmissionService(session_factory, audit_sink=sink)


def test_successful_vote(service, session_factory, election_id, sink):
    receipt = service.submit_vote(election_id, "s1", {"P1": "A", "P2": "Y"}, DURING, "10.0.0.1")

    assert receipt.election_id == election_id
    assert receipt.positions == ["P1", "P2"]
    assert receipt.submitted_at == DURING
    assert service.has_voted("s1", election_id)

    with session_factory() as db:
        assert eligibility.voted_positions(db, "s1", election_id) == ["P1", "P2"]
        entries = ledger.records_for_election(db, election_id)
    assert [e.vote_id for e in entries] == [receipt.vote_id]
    assert sink.events[-1]["action"] == "CAST_VOTE"


def test_second_vote_is_refused(service, session_factory, election_id, sink):
    service.submit_vote(election_id, "s1", {"P1": "A"}, DURING)
    with pytest.raises(AlreadyVoted):
        service.submit_vote(election_id, "s1", {"P2": "X"}, DURING + timedelta(minutes=1))

    with session_factory() as db:
        assert ledger.count_records(db, election_id) == 1
        assert eligibility.voted_positions(db, "s1", election_id) == ["P1"]
    assert sink.events[-1]["action"] == "VOTE_ALREADY_CAST"
    assert sink.events[-1]["details"]["reason"] == "already_voted"


def test_unknown_election(service, sink):
    with pytest.raises(NotFound):
        service.submit_vote("election_nope", "s1", {"P1": "A"}, DURING)
    assert sink.events[-1]["action"] == "VOTE_ELECTION_NOT_FOUND"


def test_window_bounds(service, election_id):
    service.submit_vote(election_id, "s1", {"P1": "A"}, START)
    service.submit_vote(election_id, "s2", {"P1": "A"}, END)
    with pytest.raises(VotingClosed):
        service.submit_vote(election_id, "s3", {"P1": "A"}, END + timedelta(milliseconds=1))
    with pytest.raises(VotingClosed):
        service.submit_vote(election_id, "s4", {"P1": "A"}, START - timedelta(milliseconds=1))


def test_aware_timestamps_are_compared_in_utc(service, election_id):
    plus_two = timezone(timedelta(hours=2))
    # 19:00 at UTC+2 is exactly the 17:00 UTC close
    at_close = END.replace(tzinfo=timezone.utc).astimezone(plus_two)
    service.submit_vote(election_id, "s1", {"P1": "A"}, at_close)
    with pytest.raises(VotingClosed):
        service.submit_vote(election_id, "s2", {"P1": "A"}, at_close + timedelta(milliseconds=1))


def test_candidate_under_wrong_position(service, election_id):
    with pytest.raises(InvalidSelection) as err:
        service.submit_vote(election_id, "s1", {"P1": "X"}, DURING)
    assert err.value.position_id == "P1"
    assert err.value.candidate_id == "X"
    assert not service.has_voted("s1", election_id)


def test_unknown_position_and_empty_ballot(service, election_id, sink):
    with pytest.raises(InvalidSelection) as err:
        service.submit_vote(election_id, "s1", {"P9": "A"}, DURING)
    assert err.value.position_id == "P9"
    with pytest.raises(InvalidSelection):
        service.submit_vote(election_id, "s1", {}, DURING)
    assert sink.events[-1]["action"] == "VOTE_INVALID_SELECTION"


def test_checks_run_in_order(service, election_id):
    service.submit_vote(election_id, "s1", {"P1": "A"}, DURING)
    # Closed wins over already-voted, already-voted wins over a bad ballot
    with pytest.raises(VotingClosed):
        service.submit_vote(election_id, "s1", {"P1": "A"}, END + timedelta(days=1))
    with pytest.raises(AlreadyVoted):
        service.submit_vote(election_id, "s1", {"P9": "Z"}, DURING)


def test_partial_ballots_allowed_by_default(service, election_id):
    receipt = service.submit_vote(election_id, "s1", {"P2": "X"}, DURING)
    assert receipt.positions == ["P2"]


def test_all_positions_policy(session_factory, election_id):
    strict = VoteSubmissionService(session_factory, require_all_positions=True)
    with pytest.raises(InvalidSelection) as err:
        strict.submit_vote(election_id, "s1", {"P2": "X"}, DURING)
    assert err.value.context["missing_positions"] == ["P1"]
    assert strict.submit_vote(election_id, "s1", {"P1": "B", "P2": "X"}, DURING).positions == ["P1", "P2"]


def test_bare_election_id(service, election_id):
    receipt = service.submit_vote(election_id[len("election_"):], "s1", {"P1": "A"}, DURING)
    assert receipt.election_id == election_id
    with pytest.raises(AlreadyVoted):
        service.submit_vote(election_id, "s1", {"P1": "A"}, DURING)


def test_storage_failure_leaves_nothing_behind(service, session_factory, election_id, monkeypatch, sink):
    def broken_mark(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(eligibility, "mark_voted", broken_mark)
    with pytest.raises(StorageFailure):
        service.submit_vote(election_id, "s1", {"P1": "A"}, DURING)
    monkeypatch.undo()

    with session_factory() as db:
        assert ledger.count_records(db, election_id) == 0
        assert not eligibility.has_voted(db, "s1", election_id)
    assert sink.events[-1]["action"] == "VOTE_STORAGE_FAILURE"

    # Not retried by the service, but the caller may retry
    service.submit_vote(election_id, "s1", {"P1": "A"}, DURING)


def test_lookup_failure_is_named_and_audited(service, election_id, monkeypatch, sink):
    def locked(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(eligibility, "has_voted", locked)
    with pytest.raises(StorageFailure):
        service.submit_vote(election_id, "s1", {"P1": "A"}, DURING)
    assert [e["action"] for e in sink.events] == ["VOTE_STORAGE_FAILURE"]
    assert sink.events[0]["details"]["reason"] == "storage_failure"


def test_vote_discards_stale_snapshot(service, session_factory, election_id):
    with session_factory() as db:
        tally.recompute_election(db, election_id)
    service.submit_vote(election_id, "s1", {"P1": "A"}, DURING)
    with session_factory() as db:
        assert tally.get_results(db, election_id) is None


def test_racing_duplicate_submissions(service, session_factory, election_id):
    outcomes = []
    barrier = threading.Barrier(8)

    def cast():
        barrier.wait()
        try:
            service.submit_vote(election_id, "s1", {"P1": "A"}, DURING)
            outcomes.append("ok")
        except AlreadyVoted:
            outcomes.append("already")

    threads = [threading.Thread(target=cast) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("already") == 7
    with session_factory() as db:
        assert ledger.count_records(db, election_id) == 1


def test_distinct_voters_in_parallel(service, session_factory, election_id):
    errors = []

    def cast(voter_id):
        try:
            service.submit_vote(election_id, voter_id, {"P1": "B"}, DURING)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=cast, args=(f"s{i}",)) for i in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    with session_factory() as db:
        assert ledger.count_records(db, election_id) == 5


def test_keyed_lock_releases_keys():
    locks = KeyedLock()
    with locks.hold(("s1", "e1")):
        assert len(locks) == 1
        with locks.hold(("s2", "e1")):
            assert len(locks) == 2
    assert len(locks) == 0


def test_failing_audit_sink_does_not_fail_vote(session_factory, election_id):
    class BrokenSink:
        def emit(self, *args, **kwargs):
            raise RuntimeError("sink down")

    service = VoteSubmissionService(session_factory, audit_sink=BrokenSink())
    assert service.submit_vote(election_id, "s1", {"P1": "A"}, DURING).positions == ["P1"]


def test_database_audit_sink(session_factory, election_id):
    service = VoteSubmissionService(session_factory, audit_sink=DatabaseAuditSink(session_factory))
    service.submit_vote(election_id, "s1", {"P1": "A"}, DURING, "10.0.0.9")
    with pytest.raises(AlreadyVoted):
        service.submit_vote(election_id, "s1", {"P1": "A"}, DURING, "10.0.0.9")

    with session_factory() as db:
        logs = get_audit_logs(db, election_id=election_id)
    assert [log.action_type for log in logs] == [
        AuditActionType.VOTE_ALREADY_CAST.value,
        AuditActionType.CAST_VOTE.value,
    ]
    assert logs[1].actor_id == "s1"
    assert logs[1].ip_address == "10.0.0.9"


def test_database_audit_sink_swallows_delivery_errors():
    def no_database():
        raise OperationalError("connect", {}, Exception("unable to open database file"))

    DatabaseAuditSink(no_database).emit(AuditActionType.CAST_VOTE, "s1")
