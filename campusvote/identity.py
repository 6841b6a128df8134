"""Bearer-token identity for API requests.

The voting core trusts the (voter id, role) pair carried by a valid token.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings
from .errors import AuthenticationError, PermissionDenied
from .models import Voter

ALGORITHM = "HS256"

# Security
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    voter_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def generate_api_token(voter: Voter, settings: Optional[Settings] = None) -> str:
    """Generate JWT token for API authentication"""
    settings = settings or get_settings()
    payload = {
        "sub": voter.student_id,
        "role": voter.role,
        "name": voter.name,
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.token_hours),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_api_token(token: str, settings: Optional[Settings] = None) -> Identity:
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid token") from exc

    if not payload.get("sub") or payload.get("role") not in ("student", "admin"):
        raise AuthenticationError("Invalid token")
    return Identity(voter_id=payload["sub"], role=payload["role"])


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    if credentials is None:
        raise AuthenticationError("Authentication required")
    return decode_api_token(credentials.credentials)


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if identity.role != "admin":
        raise PermissionDenied("Admin access required")
    return identity


def require_student(identity: Identity = Depends(get_current_identity)) -> Identity:
    if identity.role != "student":
        raise PermissionDenied("Student access required")
    return identity
