"""Append-only vote ledger.

Ballots are stored one row per (voter, election). The selection payload is
sealed before it is written: either kept as canonical JSON (plaintext audit
mode) or encrypted with a Fernet key. Each row also carries a SHA-256 hash of
the plaintext ballot bound to the voter and election, which is checked
whenever the row is opened again.
"""
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .errors import CorruptRecord
from .models import VoteRecord

logger = logging.getLogger(__name__)

PLAINTEXT = "plaintext"
FERNET = "fernet"


class PlaintextSealer:
    mode = PLAINTEXT

    def seal(self, data: str) -> str:
        return data

    def unseal(self, payload: str) -> str:
        return payload


class FernetSealer:
    mode = FERNET

    def __init__(self, key):
        if isinstance(key, str):
            key = key.encode()
        self._fernet = Fernet(key)

    def seal(self, data: str) -> str:
        return self._fernet.encrypt(data.encode()).decode()

    def unseal(self, payload: str) -> str:
        try:
            return self._fernet.decrypt(payload.encode()).decode()
        except InvalidToken as exc:
            raise CorruptRecord("Sealed ballot could not be decrypted") from exc


def get_sealer(settings: Optional[Settings] = None):
    settings = settings or get_settings()
    if settings.vote_key:
        return FernetSealer(settings.vote_key)
    return PlaintextSealer()


def canonical_ballot(selections: Dict[str, str]) -> str:
    return json.dumps(selections, sort_keys=True)


def generate_vote_hash(selections: Dict[str, str], voter_id: str, election_id: str) -> str:
    """Generate a hash of the vote for integrity verification"""
    vote_data = f"{canonical_ballot(selections)}:{voter_id}:{election_id}"
    return hashlib.sha256(vote_data.encode()).hexdigest()


@dataclass(frozen=True)
class LedgerEntry:
    vote_id: str
    election_id: str
    voter_id: str
    selections: Dict[str, str]
    submitted_at: datetime
    origin: str
    vote_hash: str


def append(db: Session, election_id: str, voter_id: str, selections: Dict[str, str],
           submitted_at: datetime, origin: str, sealer=None) -> VoteRecord:
    """Add a ballot to the current transaction; the caller commits"""
    sealer = sealer or get_sealer()
    record = VoteRecord(
        id=str(uuid.uuid4()),
        election_id=election_id,
        voter_id=voter_id,
        payload=sealer.seal(canonical_ballot(selections)),
        sealing=sealer.mode,
        vote_hash=generate_vote_hash(selections, voter_id, election_id),
        submitted_at=submitted_at,
        origin=origin,
    )
    db.add(record)
    db.flush()
    return record


def open_record(record: VoteRecord, sealer=None) -> LedgerEntry:
    """Unseal a stored ballot and check it against its integrity hash"""
    if record.sealing == PLAINTEXT:
        unsealer = PlaintextSealer()
    elif record.sealing == FERNET:
        unsealer = sealer or get_sealer()
        if unsealer.mode != FERNET:
            raise CorruptRecord(f"Vote {record.id} is sealed but no vote key is configured",
                                vote_id=record.id)
    else:
        raise CorruptRecord(f"Vote {record.id} has unknown sealing {record.sealing!r}",
                            vote_id=record.id)

    try:
        selections = json.loads(unsealer.unseal(record.payload))
    except CorruptRecord as exc:
        raise CorruptRecord(f"Vote {record.id}: {exc.message}", vote_id=record.id) from exc
    except ValueError as exc:
        raise CorruptRecord(f"Vote {record.id} has an unreadable payload", vote_id=record.id) from exc

    if not isinstance(selections, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in selections.items()
    ):
        raise CorruptRecord(f"Vote {record.id} payload is not a ballot", vote_id=record.id)

    if generate_vote_hash(selections, record.voter_id, record.election_id) != record.vote_hash:
        raise CorruptRecord(f"Vote {record.id} failed its integrity check", vote_id=record.id)

    return LedgerEntry(
        vote_id=record.id,
        election_id=record.election_id,
        voter_id=record.voter_id,
        selections=selections,
        submitted_at=record.submitted_at,
        origin=record.origin,
        vote_hash=record.vote_hash,
    )


def get_record(db: Session, vote_id: str) -> Optional[VoteRecord]:
    return db.get(VoteRecord, vote_id)


def count_records(db: Session, election_id: str) -> int:
    return db.query(VoteRecord).filter(VoteRecord.election_id == election_id).count()


def records_for_election(db: Session, election_id: str, sealer=None) -> List[LedgerEntry]:
    # One SELECT: only committed rows are seen, never a half-written one
    records = (
        db.query(VoteRecord)
        .filter(VoteRecord.election_id == election_id)
        .order_by(VoteRecord.submitted_at, VoteRecord.id)
        .all()
    )
    return [open_record(record, sealer) for record in records]


def verify_record(record: VoteRecord, sealer=None) -> bool:
    try:
        open_record(record, sealer)
    except CorruptRecord as exc:
        logger.warning("Integrity check failed: %s", exc.message)
        return False
    return True
