"""Session token handling and attempt throttling for KinderPortal."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, Optional

from jose import JWTError, jwt

from .exceptions import Unauthenticated
from .models import Role, SessionClaims

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class SessionVerifier:
    """Issue and verify signed session tokens.

    The secret is fixed at construction. Every failure mode of :meth:`verify`
    raises the same :class:`Unauthenticated` so no reason is leaked.
    """

    def __init__(
        self,
        secret: str,
        *,
        max_age: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not secret:
            raise ValueError("A session secret is required.")
        self._secret = secret
        self._max_age = max_age
        self._clock = clock

    def issue(self, user_id: str, role: Role, *, at: Optional[datetime] = None) -> str:
        now = at or self._clock()
        claims = {
            "sub": user_id,
            "role": role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + self._max_age).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def verify(self, token: Optional[str]) -> SessionClaims:
        if not token:
            raise Unauthenticated()
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except JWTError:
            logger.debug("Rejected session token")
            raise Unauthenticated() from None
        user_id = payload.get("sub")
        raw_role = payload.get("role")
        if not isinstance(user_id, str) or not user_id or "exp" not in payload:
            raise Unauthenticated()
        try:
            role = Role(raw_role)
        except ValueError:
            raise Unauthenticated() from None
        return SessionClaims(id=user_id, role=role)


class AttemptLimiter:
    """Count failed attempts per key inside a sliding lockout window.

    ``max_attempts=0`` disables the limiter entirely.
    """

    def __init__(self, *, max_attempts: int = 0, lockout_minutes: int = 15) -> None:
        self._max_attempts = max_attempts
        self._lockout_window = timedelta(minutes=lockout_minutes)
        self._attempts: Dict[str, Deque[datetime]] = {}

    @property
    def enabled(self) -> bool:
        return self._max_attempts > 0

    def record(self, key: str, *, success: bool, at: Optional[datetime] = None) -> None:
        if not self.enabled:
            return
        now = at or datetime.utcnow()
        bucket = self._attempts.setdefault(key, deque())
        self._prune(bucket, now)
        if success:
            bucket.clear()
            return
        bucket.append(now)

    def is_locked(self, key: str, *, at: Optional[datetime] = None) -> bool:
        if not self.enabled:
            return False
        bucket = self._attempts.get(key)
        if not bucket:
            return False
        self._prune(bucket, at or datetime.utcnow())
        return len(bucket) >= self._max_attempts

    def _prune(self, bucket: Deque[datetime], now: datetime) -> None:
        while bucket and now - bucket[0] > self._lockout_window:
            bucket.popleft()


__all__ = ["ALGORITHM", "AttemptLimiter", "SessionVerifier"]
