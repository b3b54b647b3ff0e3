"""
Centralized configuration for AltoCRM.

All configuration is loaded from environment variables with sensible defaults.
A ``.env`` file in the working directory is loaded first when present.

Usage:
    from altocrm.config import get_config
    cfg = get_config()
    print(cfg.db.url)             # "postgresql://localhost/altocrm"
    print(cfg.jobs.poll_seconds)  # 2.0
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from dotenv import load_dotenv

_TRUE_STRINGS = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters."""

    url: str = "postgresql://localhost/altocrm"
    min_connections: int = 1
    max_connections: int = 10

    @property
    def safe_url(self) -> str:
        """Return the URL with any password masked, for logging."""
        parts = urlsplit(self.url)
        if not parts.password:
            return self.url
        netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
        return urlunsplit(parts._replace(netloc=netloc))


@dataclass(frozen=True)
class JobsConfig:
    """Background job poller settings."""

    enabled: bool = True
    poll_seconds: float = 2.0
    purge_after_days: int = 30


@dataclass(frozen=True)
class Config:
    """Top-level AltoCRM configuration."""

    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)

    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "INFO"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_STRINGS


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    db = DatabaseConfig(
        url=os.environ.get("DATABASE_URL", "postgresql://localhost/altocrm"),
        min_connections=int(os.environ.get("ALTOCRM_DB_MIN_CONNECTIONS", "1")),
        max_connections=int(os.environ.get("ALTOCRM_DB_MAX_CONNECTIONS", "10")),
    )

    jobs = JobsConfig(
        enabled=_env_bool("ALTOCRM_JOBS_ENABLED", True),
        poll_seconds=float(os.environ.get("ALTOCRM_JOB_POLL_SECONDS", "2")),
        purge_after_days=int(os.environ.get("ALTOCRM_PURGE_AFTER_DAYS", "30")),
    )

    return Config(
        db=db,
        jobs=jobs,
        host=os.environ.get("ALTOCRM_HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8080")),
        log_level=os.environ.get("ALTOCRM_LOG_LEVEL", "INFO").upper(),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
