"""Domain models used by the KinderPortal package."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Union


class Role(str, Enum):
    """Fixed per-user role; there is no role change flow."""

    ADMIN = "ADMIN"
    HEADTEACHER = "HEADTEACHER"
    TEACHER = "TEACHER"
    PARENT = "PARENT"


MANAGER_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.HEADTEACHER})
STAFF_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.HEADTEACHER, Role.TEACHER})
ALL_ROLES: FrozenSet[Role] = frozenset(Role)


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class ConsentStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True, slots=True)
class SessionClaims:
    """Validated contents of a session token."""

    id: str
    role: Role


@dataclass(frozen=True, slots=True)
class AdminIdentity:
    id: str
    role: Role = field(default=Role.ADMIN, init=False)


@dataclass(frozen=True, slots=True)
class HeadTeacherIdentity:
    id: str
    role: Role = field(default=Role.HEADTEACHER, init=False)


@dataclass(frozen=True, slots=True)
class TeacherIdentity:
    """A teacher; ``group_id`` is ``None`` until a head teacher assigns one."""

    id: str
    group_id: Optional[str] = None
    role: Role = field(default=Role.TEACHER, init=False)


@dataclass(frozen=True, slots=True)
class ParentIdentity:
    id: str
    child_ids: FrozenSet[str] = frozenset()
    role: Role = field(default=Role.PARENT, init=False)


Identity = Union[AdminIdentity, HeadTeacherIdentity, TeacherIdentity, ParentIdentity]


@dataclass(frozen=True, slots=True)
class ChildScope:
    """Set of child ids a caller may act upon, or every child."""

    child_ids: FrozenSet[str] = frozenset()
    unrestricted: bool = False

    @classmethod
    def everything(cls) -> "ChildScope":
        return cls(unrestricted=True)

    @classmethod
    def of(cls, child_ids: Iterable[str]) -> "ChildScope":
        return cls(child_ids=frozenset(child_ids))

    def allows(self, child_id: str) -> bool:
        return self.unrestricted or child_id in self.child_ids


__all__ = [
    "Action",
    "AdminIdentity",
    "ALL_ROLES",
    "AttendanceStatus",
    "ChildScope",
    "ConsentStatus",
    "HeadTeacherIdentity",
    "Identity",
    "MANAGER_ROLES",
    "ParentIdentity",
    "PaymentStatus",
    "Role",
    "SessionClaims",
    "STAFF_ROLES",
    "TeacherIdentity",
]
