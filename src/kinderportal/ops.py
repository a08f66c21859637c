"""Operational utilities for KinderPortal."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


class StructuredLogger:
    """Write JSON lines audit entries for security relevant events."""

    def __init__(self, *, path: Path | None = None, retain: int = 500) -> None:
        self.path = path
        self._retain = retain
        self._entries: list[dict] = []

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": datetime.utcnow().isoformat(), "event": event_type, **fields}
        self._entries.append(entry)
        del self._entries[: -self._retain]
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry) + "\n")
        return entry

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries[-limit:])


class HealthMonitor:
    """Aggregate runtime health information for the status endpoint."""

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self._engine = engine
        self._clock = clock
        self.last_sweep_at: Optional[datetime] = None
        self.last_sweep_count: Optional[int] = None

    def record_sweep(self, count: int) -> None:
        self.last_sweep_at = self._clock()
        self.last_sweep_count = count

    def database_online(self) -> bool:
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def status(self) -> dict:
        return {
            "database": "ok" if self.database_online() else "down",
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_sweep_count": self.last_sweep_count,
        }


__all__ = ["HealthMonitor", "StructuredLogger"]
