"""Daily pickup codes used to release a child to an authorized person.

Each child gets at most one code per calendar day. A code moves from unused
to used exactly once; the next day starts from scratch because the day is part
of the row's unique key.
"""

from __future__ import annotations

import logging
import secrets
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .exceptions import PickupCodeConflict
from .security import AttemptLimiter
from .webapp.persistence import Child, DailyPickupCode

logger = logging.getLogger(__name__)

CODE_MIN = 10000
CODE_SPAN = 90000


def generate_code() -> str:
    """Return a uniformly drawn code in ``10000..99999``."""

    return str(CODE_MIN + secrets.randbelow(CODE_SPAN))


def is_well_formed(code: str) -> bool:
    return len(code) == 5 and code.isdigit() and code[0] != "0"


class PickupCodeManager:
    """Issue, verify and sweep daily pickup codes inside one DB session."""

    def __init__(
        self,
        session: Session,
        *,
        clock: Callable[[], datetime] = datetime.now,
        limiter: Optional[AttemptLimiter] = None,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self._session = session
        self._clock = clock
        self._limiter = limiter or AttemptLimiter()
        self._code_factory = code_factory

    def today(self) -> date:
        return self._clock().date()

    def find(self, child_id: str, day: Optional[date] = None) -> Optional[DailyPickupCode]:
        target = day or self.today()
        statement = select(DailyPickupCode).where(
            DailyPickupCode.child_id == child_id, DailyPickupCode.day == target
        )
        return self._session.exec(statement).first()

    def get_or_create(self, child_id: str, day: Optional[date] = None) -> DailyPickupCode:
        target = day or self.today()
        existing = self.find(child_id, target)
        if existing is not None:
            return existing
        try:
            return self._insert(child_id, target)
        except PickupCodeConflict:
            logger.debug("Pickup code for child %s on %s created concurrently", child_id, target)
            winner = self.find(child_id, target)
            if winner is None:
                raise
            return winner

    def verify(self, child_id: str, code: str, day: Optional[date] = None) -> bool:
        """Consume today's code for ``child_id`` if ``code`` matches and is unused."""

        now = self._clock()
        target = day or now.date()
        if self._limiter.is_locked(child_id, at=now):
            return False
        statement = (
            update(DailyPickupCode)
            .where(
                DailyPickupCode.child_id == child_id,
                DailyPickupCode.day == target,
                DailyPickupCode.code == code,
                DailyPickupCode.is_used == False,  # noqa: E712
            )
            .values(is_used=True, used_at=now)
        )
        result = self._session.exec(statement)  # type: ignore[call-overload]
        self._session.commit()
        verified = result.rowcount == 1
        self._limiter.record(child_id, success=verified, at=now)
        return verified

    def sweep(self, day: Optional[date] = None) -> int:
        """Issue a code for every child lacking one for ``day``; returns how many."""

        target = day or self.today()
        issued = select(DailyPickupCode.child_id).where(DailyPickupCode.day == target)
        missing = self._session.exec(select(Child.id).where(Child.id.not_in(issued))).all()  # type: ignore[union-attr]
        created = 0
        for child_id in missing:
            try:
                self._insert(child_id, target)
            except PickupCodeConflict:
                continue
            created += 1
        logger.info("Pickup code sweep for %s created %d codes", target, created)
        return created

    def _insert(self, child_id: str, day: date) -> DailyPickupCode:
        row = DailyPickupCode(child_id=child_id, day=day, code=self._code_factory())
        self._session.add(row)
        try:
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise PickupCodeConflict(f"Pickup code for {child_id} on {day} already exists") from exc
        self._session.refresh(row)
        return row


__all__ = ["CODE_MIN", "CODE_SPAN", "PickupCodeManager", "generate_code", "is_well_formed"]
