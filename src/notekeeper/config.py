import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at startup."""

    database_url: Optional[str] = None
    data_dir: str = "./db"
    env: str = "dev"
    database_ssl: Optional[str] = None
    pool_size: int = 10
    pool_timeout: int = 10
    idle_timeout: int = 300
    connect_timeout: int = 5
    statement_timeout: int = 15
    secret_key: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    token_expire_days: int = 7
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


# PUBLIC_INTERFACE
def load_settings() -> Settings:
    """
    Build Settings from environment variables (a .env file is honoured).

    Returns:
        Settings populated from DATABASE_URL, DATA_DIR, ENV, DATABASE_SSL,
        DB_* pool options, SECRET_KEY, ACCESS_TOKEN_EXPIRE_DAYS and CORS_ORIGINS.
    """
    secret = os.getenv("SECRET_KEY")
    if not secret:
        logger.warning("SECRET_KEY is not set; issued tokens will not survive a restart")
        secret = secrets.token_urlsafe(32)

    origins = os.getenv("CORS_ORIGINS", "http://localhost:5173")

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        data_dir=os.getenv("DATA_DIR", "./db"),
        env=os.getenv("ENV", "dev"),
        database_ssl=os.getenv("DATABASE_SSL") or None,
        pool_size=_env_int("DB_POOL_SIZE", 10),
        pool_timeout=_env_int("DB_POOL_TIMEOUT", 10),
        idle_timeout=_env_int("DB_IDLE_TIMEOUT", 300),
        connect_timeout=_env_int("DB_CONNECT_TIMEOUT", 5),
        statement_timeout=_env_int("DB_STATEMENT_TIMEOUT", 15),
        secret_key=secret,
        token_expire_days=_env_int("ACCESS_TOKEN_EXPIRE_DAYS", 7),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str = "INFO") -> None:
    """Route module loggers to stderr with a timestamped format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
