from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session
from werkzeug.security import generate_password_hash

from kinderportal.models import Role
from kinderportal.webapp.config import Settings
from kinderportal.webapp.persistence import Child, Group, Staff, User, create_db_engine, init_db

NOW = datetime(2024, 5, 1, 8, 30)
PASSWORD = "correct horse"
CRON_SECRET = "cron-test-secret"


@dataclass
class World:
    admin: str
    headteacher: str
    teacher: str
    second_teacher: str
    idle_teacher: str
    parent_x: str
    parent_y: str
    childless_parent: str
    group: str
    other_group: str
    child_a: str
    child_b: str
    idle_staff: str


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'kinderportal.db'}")
    init_db(engine)
    return engine


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(NOW)


def _user(session: Session, email: str, role: Role) -> User:
    user = User(
        email=email,
        password_hash=generate_password_hash(PASSWORD),
        name=email.split("@")[0].title(),
        surname="Test",
        role=role,
    )
    session.add(user)
    session.flush()
    return user


@pytest.fixture
def world(engine) -> World:
    """Parent X has child A without a group; parent Y has child B in group G."""

    with Session(engine) as session:
        admin = _user(session, "admin@example.com", Role.ADMIN)
        head = _user(session, "head@example.com", Role.HEADTEACHER)
        teacher = _user(session, "teacher@example.com", Role.TEACHER)
        second = _user(session, "second@example.com", Role.TEACHER)
        idle = _user(session, "idle@example.com", Role.TEACHER)
        parent_x = _user(session, "x@example.com", Role.PARENT)
        parent_y = _user(session, "y@example.com", Role.PARENT)
        childless = _user(session, "nokids@example.com", Role.PARENT)

        group = Group(name="Ladybirds", capacity=20)
        other_group = Group(name="Hedgehogs", capacity=18)
        session.add(group)
        session.add(other_group)
        session.flush()

        session.add(Staff(user_id=teacher.id, group_id=group.id))
        session.add(Staff(user_id=second.id, group_id=group.id))
        idle_staff = Staff(user_id=idle.id, group_id=None)
        session.add(idle_staff)

        child_a = Child(name="Ada", surname="Xavier", parent_id=parent_x.id, group_id=None)
        child_b = Child(name="Ben", surname="Young", parent_id=parent_y.id, group_id=group.id)
        session.add(child_a)
        session.add(child_b)
        session.commit()

        return World(
            admin=admin.id,
            headteacher=head.id,
            teacher=teacher.id,
            second_teacher=second.id,
            idle_teacher=idle.id,
            parent_x=parent_x.id,
            parent_y=parent_y.id,
            childless_parent=childless.id,
            group=group.id,
            other_group=other_group.id,
            child_a=child_a.id,
            child_b=child_b.id,
            idle_staff=idle_staff.id,
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        session_secret="test-session-secret",
        cron_secret=CRON_SECRET,
        database_url=f"sqlite:///{tmp_path / 'kinderportal.db'}",
        audit_log_path=tmp_path / "audit.log",
    )


@pytest.fixture
def app(settings, engine, clock, world):
    from kinderportal.webapp import create_app

    return create_app(settings, engine=engine, clock=clock)


@pytest.fixture
def client_for(app):
    """Return a TestClient whose session cookie belongs to ``user_id``."""

    def build(user_id: str) -> TestClient:
        with Session(app.state.engine) as session:
            user = session.get(User, user_id)
            role = user.role
        client = TestClient(app)
        client.cookies.set(app.state.settings.session_cookie_name, app.state.verifier.issue(user_id, role))
        return client

    return build
