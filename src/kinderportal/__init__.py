"""KinderPortal package: kindergarten administration with scoped access and pickup codes."""

from .access import POLICIES, AccessEvaluator, ResourcePolicy, policy_for, resolve_identity
from .exceptions import (
    Forbidden,
    KinderPortalError,
    NoGroupAssigned,
    NotFound,
    PickupCodeConflict,
    Unauthenticated,
    ValidationError,
)
from .models import (
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
from .ops import HealthMonitor, StructuredLogger
from .pickup import PickupCodeManager, generate_code, is_well_formed
from .security import AttemptLimiter, SessionVerifier

__all__ = [
    "AccessEvaluator",
    "Action",
    "AdminIdentity",
    "AttemptLimiter",
    "ChildScope",
    "Forbidden",
    "HeadTeacherIdentity",
    "HealthMonitor",
    "Identity",
    "KinderPortalError",
    "NoGroupAssigned",
    "NotFound",
    "POLICIES",
    "ParentIdentity",
    "PickupCodeConflict",
    "PickupCodeManager",
    "ResourcePolicy",
    "Role",
    "SessionClaims",
    "SessionVerifier",
    "StructuredLogger",
    "TeacherIdentity",
    "Unauthenticated",
    "ValidationError",
    "generate_code",
    "is_well_formed",
    "policy_for",
    "resolve_identity",
]
