import pytest
from sqlmodel import Session, select

from kinderportal.access import POLICIES, AccessEvaluator, policy_for, resolve_identity
from kinderportal.exceptions import Forbidden, NoGroupAssigned, Unauthenticated
from kinderportal.models import (
    ALL_ROLES,
    Action,
    AdminIdentity,
    HeadTeacherIdentity,
    ParentIdentity,
    Role,
    SessionClaims,
    TeacherIdentity,
)
from kinderportal.webapp.persistence import Child


@pytest.fixture
def session(engine, world):
    with Session(engine) as session:
        yield session


def identity_for(session: Session, user_id: str, role: Role):
    return resolve_identity(session, SessionClaims(id=user_id, role=role))


def test_resolve_identity_loads_relations(session, world) -> None:
    teacher = identity_for(session, world.teacher, Role.TEACHER)
    parent = identity_for(session, world.parent_y, Role.PARENT)
    assert teacher == TeacherIdentity(id=world.teacher, group_id=world.group)
    assert parent == ParentIdentity(id=world.parent_y, child_ids=frozenset({world.child_b}))
    assert isinstance(identity_for(session, world.admin, Role.ADMIN), AdminIdentity)
    assert isinstance(identity_for(session, world.headteacher, Role.HEADTEACHER), HeadTeacherIdentity)


def test_resolve_identity_rejects_unknown_user_or_role_mismatch(session, world) -> None:
    with pytest.raises(Unauthenticated):
        identity_for(session, "missing", Role.ADMIN)
    with pytest.raises(Unauthenticated):
        identity_for(session, world.parent_x, Role.ADMIN)


def test_parent_reaches_exactly_own_children(session, world) -> None:
    evaluator = AccessEvaluator(session)
    children = session.exec(select(Child)).all()
    for parent_id in (world.parent_x, world.parent_y, world.childless_parent):
        parent = identity_for(session, parent_id, Role.PARENT)
        for child in children:
            assert evaluator.can_access_child(parent, child.id) is (child.parent_id == parent_id)


def test_teacher_reaches_exactly_group_children(session, world) -> None:
    evaluator = AccessEvaluator(session)
    teacher = identity_for(session, world.teacher, Role.TEACHER)
    idle = identity_for(session, world.idle_teacher, Role.TEACHER)
    for child in session.exec(select(Child)).all():
        expected = child.group_id is not None and child.group_id == world.group
        assert evaluator.can_access_child(teacher, child.id) is expected
        assert evaluator.can_access_child(idle, child.id) is False


def test_admin_and_headteacher_reach_every_child(session, world) -> None:
    evaluator = AccessEvaluator(session)
    for identity in (AdminIdentity(id=world.admin), HeadTeacherIdentity(id=world.headteacher)):
        for child_id in (world.child_a, world.child_b):
            assert evaluator.can_access_child(identity, child_id)
        assert evaluator.scope_for_role(identity).unrestricted


def test_unknown_child_is_never_accessible(session, world) -> None:
    evaluator = AccessEvaluator(session)
    assert not evaluator.can_access_child(AdminIdentity(id=world.admin), "no-such-child")
    assert not evaluator.can_access_resource(AdminIdentity(id=world.admin), "no-such-child")


def test_teacher_and_parent_scopes(session, world) -> None:
    evaluator = AccessEvaluator(session)
    teacher = identity_for(session, world.teacher, Role.TEACHER)
    parent = identity_for(session, world.parent_x, Role.PARENT)
    childless = identity_for(session, world.childless_parent, Role.PARENT)
    assert evaluator.scope_for_role(teacher).child_ids == {world.child_b}
    assert evaluator.scope_for_role(parent).child_ids == {world.child_a}
    scope = evaluator.scope_for_role(childless)
    assert not scope.unrestricted and not scope.child_ids


def test_group_attendance_access_follows_relations(session, world) -> None:
    evaluator = AccessEvaluator(session)
    teacher = identity_for(session, world.teacher, Role.TEACHER)
    parent_y = identity_for(session, world.parent_y, Role.PARENT)

    evaluator.authorize(teacher, "attendance", Action.READ, world.child_b)
    with pytest.raises(Forbidden):
        evaluator.authorize(teacher, "attendance", Action.READ, world.child_a)
    with pytest.raises(Forbidden):
        evaluator.authorize(parent_y, "child", Action.READ, world.child_a)


def test_teacher_without_group_gets_distinct_condition(session, world) -> None:
    idle = identity_for(session, world.idle_teacher, Role.TEACHER)
    with pytest.raises(NoGroupAssigned):
        AccessEvaluator(session).scope_for_role(idle)


def test_role_rules_apply_before_relation(session, world) -> None:
    evaluator = AccessEvaluator(session)
    teacher = identity_for(session, world.teacher, Role.TEACHER)
    parent = identity_for(session, world.parent_y, Role.PARENT)
    with pytest.raises(Forbidden):
        evaluator.authorize(teacher, "consent", Action.READ, world.child_b)
    with pytest.raises(Forbidden):
        evaluator.authorize(teacher, "payment", Action.READ, world.child_b)
    with pytest.raises(Forbidden):
        evaluator.authorize(parent, "attendance", Action.CREATE, world.child_b)
    with pytest.raises(Forbidden):
        evaluator.require_role(parent, "child", Action.CREATE)
    evaluator.authorize(parent, "payment", Action.UPDATE, world.child_b)
    evaluator.authorize(parent, "medication", Action.CREATE, world.child_b)


def test_behavioral_info_teachers_only_touch_own_entries(session, world) -> None:
    evaluator = AccessEvaluator(session)
    teacher = identity_for(session, world.teacher, Role.TEACHER)
    head = HeadTeacherIdentity(id=world.headteacher)
    evaluator.authorize(teacher, "behavioral_info", Action.UPDATE, world.child_b, author_id=world.teacher)
    with pytest.raises(Forbidden):
        evaluator.authorize(
            teacher, "behavioral_info", Action.DELETE, world.child_b, author_id=world.second_teacher
        )
    evaluator.authorize(head, "behavioral_info", Action.DELETE, world.child_b, author_id=world.teacher)


def test_every_policy_lets_managers_read() -> None:
    assert set(POLICIES) == {
        "child",
        "attendance",
        "consent",
        "payment",
        "medication",
        "chronic_disease",
        "behavioral_info",
        "pickup_record",
        "authorized_person",
    }
    for policy in POLICIES.values():
        assert {Role.ADMIN, Role.HEADTEACHER} <= policy.roles_for(Action.READ)
    assert policy_for("medication").roles_for(Action.DELETE) == ALL_ROLES
    with pytest.raises(KeyError):
        policy_for("cafeteria")


def test_parent_scope_comes_from_resolved_identity(session, world) -> None:
    evaluator = AccessEvaluator(session)
    stale = ParentIdentity(id=world.parent_y, child_ids=frozenset())
    assert evaluator.scope_for_role(stale).child_ids == frozenset()
    fresh = identity_for(session, world.parent_y, Role.PARENT)
    assert evaluator.scope_for_role(fresh).child_ids == {world.child_b}
