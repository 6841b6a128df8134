import os
import secrets
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

# --- Load env ---
load_dotenv()

TRUE_VALUES = ("1", "true", "yes", "on")


def env_flag(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in TRUE_VALUES


@dataclass
class Settings:
    database_url: str = "sqlite:///./voting_system.db"
    # JWT secret for API tokens
    jwt_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    token_hours: int = 24
    # Fernet key used to seal ballots; plaintext-audit mode when unset
    vote_key: Optional[str] = None
    # Partial ballots are accepted unless this is set
    require_all_positions: bool = False
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from CAMPUSVOTE_* environment variables"""
        defaults = cls()
        origins = os.getenv("CAMPUSVOTE_ALLOWED_ORIGINS")
        return cls(
            database_url=os.getenv("CAMPUSVOTE_DATABASE_URL", defaults.database_url),
            jwt_secret=os.getenv("CAMPUSVOTE_JWT_SECRET") or defaults.jwt_secret,
            token_hours=int(os.getenv("CAMPUSVOTE_TOKEN_HOURS", defaults.token_hours)),
            vote_key=os.getenv("CAMPUSVOTE_VOTE_KEY") or None,
            require_all_positions=env_flag("CAMPUSVOTE_REQUIRE_ALL_POSITIONS"),
            allowed_origins=(
                [o.strip() for o in origins.split(",") if o.strip()]
                if origins else defaults.allowed_origins
            ),
            log_level=os.getenv("CAMPUSVOTE_LOG_LEVEL", defaults.log_level).upper(),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
