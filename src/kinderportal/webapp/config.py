"""Configuration for the KinderPortal web backend."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///kinderportal.db"
DEFAULT_SESSION_SECRET = "change-this-session-secret"
DEFAULT_SESSION_MAX_AGE_MINUTES = 60 * 24 * 7
SESSION_COOKIE_NAME = "session"


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read once at startup and never mutated."""

    session_secret: str = DEFAULT_SESSION_SECRET
    session_max_age: timedelta = timedelta(minutes=DEFAULT_SESSION_MAX_AGE_MINUTES)
    session_cookie_name: str = SESSION_COOKIE_NAME
    cron_secret: Optional[str] = None
    database_url: str = DEFAULT_DATABASE_URL
    pickup_max_attempts: int = 0
    pickup_lockout_minutes: int = 15
    audit_log_path: Optional[Path] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ
        audit_path = environ.get("AUDIT_LOG_PATH")
        return cls(
            session_secret=environ.get("SESSION_SECRET", DEFAULT_SESSION_SECRET),
            session_max_age=timedelta(
                minutes=int(environ.get("SESSION_MAX_AGE_MINUTES", DEFAULT_SESSION_MAX_AGE_MINUTES))
            ),
            session_cookie_name=environ.get("SESSION_COOKIE_NAME", SESSION_COOKIE_NAME),
            cron_secret=environ.get("CRON_SECRET") or None,
            database_url=environ.get("KINDERPORTAL_DATABASE_URL", DEFAULT_DATABASE_URL),
            pickup_max_attempts=int(environ.get("PICKUP_MAX_ATTEMPTS", "0")),
            pickup_lockout_minutes=int(environ.get("PICKUP_LOCKOUT_MINUTES", "15")),
            audit_log_path=Path(audit_path) if audit_path else None,
        )


__all__ = [
    "DEFAULT_DATABASE_URL",
    "DEFAULT_SESSION_MAX_AGE_MINUTES",
    "DEFAULT_SESSION_SECRET",
    "SESSION_COOKIE_NAME",
    "Settings",
]
