import logging
from typing import Any, Dict, List, Optional

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import eligibility
from .errors import AuthenticationError, DuplicateUser
from .models import Voter, utcnow
from .schemas import VoterCreate

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # Not a hash this context recognises
        return False


def get_voter(db: Session, student_id: str) -> Optional[Voter]:
    return db.get(Voter, student_id)


def get_voter_by_email(db: Session, email: str) -> Optional[Voter]:
    return db.query(Voter).filter(Voter.email == email).first()


def create_voter(db: Session, data: VoterCreate) -> Voter:
    if get_voter(db, data.student_id):
        raise DuplicateUser("User with this student ID already exists")
    if get_voter_by_email(db, data.email):
        raise DuplicateUser("User with this email already exists")

    voter = Voter(
        student_id=data.student_id,
        name=data.name,
        email=data.email,
        role=data.role,
        password_hash=hash_password(data.password),
        created_at=utcnow(),
    )
    db.add(voter)
    db.commit()
    db.refresh(voter)
    logger.info("Created %s %s", voter.role, voter.student_id)
    return voter


def authenticate(db: Session, student_id: str, password: str, role: Optional[str] = None) -> Voter:
    voter = get_voter(db, student_id)
    if voter is None or not verify_password(password, voter.password_hash):
        raise AuthenticationError("Invalid credentials")
    if role is not None and voter.role != role:
        raise AuthenticationError("Invalid credentials")
    return voter


def list_voters(db: Session) -> List[Voter]:
    return db.query(Voter).order_by(Voter.student_id).all()


def count_students(db: Session) -> int:
    return db.query(Voter).filter(Voter.role == "student").count()


def serialize_voter(db: Session, voter: Voter) -> Dict[str, Any]:
    """Public view of a voter; the password hash is never included"""
    return {
        "student_id": voter.student_id,
        "name": voter.name,
        "email": voter.email,
        "role": voter.role,
        "voted_elections": eligibility.voted_elections(db, voter.student_id),
    }
