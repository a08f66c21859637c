"""Persistence and SQLModel definitions for the KinderPortal backend."""
from __future__ import annotations

from datetime import date, datetime
from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine

from ..models import AttendanceStatus, ConsentStatus, PaymentStatus, Role


def new_id() -> str:
    return uuid4().hex


# ---------------------------------------------------------------------------
# People and classrooms
# ---------------------------------------------------------------------------
class User(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    name: str
    surname: str
    role: Role
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Room(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    capacity: int = 0


class Group(SQLModel, table=True):
    __tablename__ = "groups"  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    capacity: int = 0
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    room_id: Optional[str] = Field(default=None, foreign_key="room.id")


class Staff(SQLModel, table=True):
    """Employment record; only TEACHER users normally have one."""

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", unique=True)
    group_id: Optional[str] = Field(default=None, foreign_key="groups.id", index=True)
    position: Optional[str] = None


class Child(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    surname: str
    birth_date: Optional[date] = None
    parent_id: str = Field(foreign_key="user.id", index=True)
    group_id: Optional[str] = Field(default=None, foreign_key="groups.id", index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ---------------------------------------------------------------------------
# Per-child records
# ---------------------------------------------------------------------------
class Attendance(SQLModel, table=True):
    """At most one row per child and day; re-posting overwrites it."""

    __table_args__ = (UniqueConstraint("child_id", "day", name="uq_attendance_child_day"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    day: date
    status: AttendanceStatus = AttendanceStatus.PRESENT
    reason: Optional[str] = None


class Consent(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    consent_type: str
    status: ConsentStatus = ConsentStatus.PENDING
    given_at: datetime = Field(default_factory=datetime.utcnow)
    expiry_date: Optional[date] = None


class Payment(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    amount_cents: int
    description: str
    due_date: date
    paid_date: Optional[date] = None
    status: PaymentStatus = PaymentStatus.PENDING


class Medication(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    name: str
    dosage: str
    frequency: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChronicDisease(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    name: str
    diagnosed_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class BehavioralInfo(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    author_id: str = Field(foreign_key="user.id")
    day: date
    category: str
    description: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PickupRecord(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    pickup_date: date
    pickup_time: datetime
    authorized_person: str
    verification_method: Optional[str] = None
    notes: Optional[str] = None


class AuthorizedPerson(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    name: str
    surname: str
    relation: str
    phone: Optional[str] = None
    id_number: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DailyPickupCode(SQLModel, table=True):
    """One row per child and calendar day; the constraint is the race guard."""

    __table_args__ = (UniqueConstraint("child_id", "day", name="uq_pickup_code_child_day"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    child_id: str = Field(foreign_key="child.id", index=True)
    day: date
    code: str = Field(max_length=5)
    is_used: bool = False
    used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------
def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def iter_session(engine: Engine) -> Iterator[Session]:
    with Session(engine, expire_on_commit=False) as session:
        yield session


__all__ = [
    "Attendance",
    "AuthorizedPerson",
    "BehavioralInfo",
    "Child",
    "ChronicDisease",
    "Consent",
    "DailyPickupCode",
    "Group",
    "Medication",
    "Payment",
    "PickupRecord",
    "Room",
    "Staff",
    "User",
    "create_db_engine",
    "init_db",
    "iter_session",
    "new_id",
]
