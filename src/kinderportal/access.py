"""Authorization and resource scoping.

Every decision pivots on a child. A caller reaches a child through exactly one
of three relations:

* the caller is the child's parent,
* the caller is a teacher whose staff record points at the child's group,
* the caller is a head teacher or an administrator.

Record types tied to a child (attendance, consents, payments, ...) only add a
:class:`ResourcePolicy` saying which roles may perform each action. A request
must pass the role check *and* the child relation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from sqlmodel import Session, select

from .exceptions import Forbidden, NoGroupAssigned, Unauthenticated
from .models import (
    ALL_ROLES,
    MANAGER_ROLES,
    STAFF_ROLES,
    Action,
    AdminIdentity,
    ChildScope,
    HeadTeacherIdentity,
    Identity,
    ParentIdentity,
    Role,
    SessionClaims,
    TeacherIdentity,
)
from .webapp.persistence import Child, Staff, User

logger = logging.getLogger(__name__)

PARENT_AND_MANAGERS: FrozenSet[Role] = frozenset({Role.PARENT}) | MANAGER_ROLES


@dataclass(frozen=True)
class ResourcePolicy:
    """Role sets allowed per action for one resource kind.

    ``author_roles`` lists roles that may only update/delete records they
    authored themselves.
    """

    kind: str
    label: str
    read: FrozenSet[Role] = ALL_ROLES
    create: FrozenSet[Role] = ALL_ROLES
    update: FrozenSet[Role] = ALL_ROLES
    delete: FrozenSet[Role] = ALL_ROLES
    author_roles: FrozenSet[Role] = field(default_factory=frozenset)

    def roles_for(self, action: Action) -> FrozenSet[Role]:
        return {
            Action.READ: self.read,
            Action.CREATE: self.create,
            Action.UPDATE: self.update,
            Action.DELETE: self.delete,
        }[action]


POLICIES: Mapping[str, ResourcePolicy] = {
    policy.kind: policy
    for policy in (
        ResourcePolicy(
            "child", "Child", create=MANAGER_ROLES, update=MANAGER_ROLES, delete=MANAGER_ROLES
        ),
        ResourcePolicy("attendance", "Attendance record", create=STAFF_ROLES),
        ResourcePolicy(
            "consent",
            "Consent",
            read=PARENT_AND_MANAGERS,
            create=PARENT_AND_MANAGERS,
            update=PARENT_AND_MANAGERS,
            delete=MANAGER_ROLES,
        ),
        ResourcePolicy(
            "payment",
            "Payment",
            read=PARENT_AND_MANAGERS,
            create=MANAGER_ROLES,
            update=PARENT_AND_MANAGERS,
            delete=MANAGER_ROLES,
        ),
        ResourcePolicy("medication", "Medication"),
        ResourcePolicy("chronic_disease", "Chronic disease"),
        ResourcePolicy(
            "behavioral_info",
            "Behavioral information",
            create=STAFF_ROLES,
            update=STAFF_ROLES,
            delete=STAFF_ROLES,
            author_roles=frozenset({Role.TEACHER}),
        ),
        ResourcePolicy(
            "pickup_record", "Pickup record", create=STAFF_ROLES, update=STAFF_ROLES, delete=MANAGER_ROLES
        ),
        ResourcePolicy(
            "authorized_person",
            "Authorized person",
            create=PARENT_AND_MANAGERS,
            update=PARENT_AND_MANAGERS,
            delete=PARENT_AND_MANAGERS,
        ),
    )
}


def policy_for(kind: str) -> ResourcePolicy:
    try:
        return POLICIES[kind]
    except KeyError:
        raise KeyError(f"Unknown resource kind '{kind}'.") from None


def resolve_identity(session: Session, claims: SessionClaims) -> Identity:
    """Load the relation data each role needs for access decisions."""

    user = session.get(User, claims.id)
    if user is None or user.role != claims.role:
        raise Unauthenticated()
    if claims.role is Role.ADMIN:
        return AdminIdentity(id=user.id)
    if claims.role is Role.HEADTEACHER:
        return HeadTeacherIdentity(id=user.id)
    if claims.role is Role.TEACHER:
        staff = session.exec(select(Staff).where(Staff.user_id == user.id)).first()
        return TeacherIdentity(id=user.id, group_id=staff.group_id if staff else None)
    child_ids = session.exec(select(Child.id).where(Child.parent_id == user.id)).all()
    return ParentIdentity(id=user.id, child_ids=frozenset(child_ids))


def relation_allows(identity: Identity, child: Child) -> bool:
    """Pure check of the three ownership relations against a loaded child."""

    if isinstance(identity, (AdminIdentity, HeadTeacherIdentity)):
        return True
    if isinstance(identity, ParentIdentity):
        return child.parent_id == identity.id
    if isinstance(identity, TeacherIdentity):
        return identity.group_id is not None and child.group_id == identity.group_id
    return False


class AccessEvaluator:
    """Answer scope and single-resource questions for one request."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def scope_for_role(self, identity: Identity) -> ChildScope:
        if isinstance(identity, (AdminIdentity, HeadTeacherIdentity)):
            return ChildScope.everything()
        if isinstance(identity, ParentIdentity):
            return ChildScope.of(identity.child_ids)
        if isinstance(identity, TeacherIdentity):
            if identity.group_id is None:
                raise NoGroupAssigned()
            child_ids = self._session.exec(select(Child.id).where(Child.group_id == identity.group_id)).all()
            return ChildScope.of(child_ids)
        return ChildScope()

    def can_access_child(self, identity: Identity, child_id: str) -> bool:
        child = self._session.get(Child, child_id)
        if child is None:
            return False
        return relation_allows(identity, child)

    def can_access_resource(self, identity: Identity, resource_owner_child_id: str) -> bool:
        return self.can_access_child(identity, resource_owner_child_id)

    def require_role(self, identity: Identity, kind: str, action: Action) -> ResourcePolicy:
        policy = policy_for(kind)
        if identity.role not in policy.roles_for(action):
            self._deny(identity, kind, action, "role")
        return policy

    def authorize(
        self,
        identity: Identity,
        kind: str,
        action: Action,
        owner_child_id: str,
        *,
        author_id: Optional[str] = None,
    ) -> None:
        """Raise :class:`Forbidden` unless both role and relation allow ``action``."""

        policy = self.require_role(identity, kind, action)
        if not self.can_access_resource(identity, owner_child_id):
            self._deny(identity, kind, action, "relation")
        if (
            action in (Action.UPDATE, Action.DELETE)
            and identity.role in policy.author_roles
            and author_id != identity.id
        ):
            self._deny(identity, kind, action, "author")

    def _deny(self, identity: Identity, kind: str, action: Action, rule: str) -> None:
        logger.info("Denied %s %s for %s user %s (%s)", action.value, kind, identity.role.value, identity.id, rule)
        raise Forbidden()


__all__ = [
    "AccessEvaluator",
    "POLICIES",
    "ResourcePolicy",
    "policy_for",
    "relation_allows",
    "resolve_identity",
]
