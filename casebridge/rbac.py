"""
Role-Based Access Control
=========================

Static role -> permission matrix for internal (firm staff) users.

Roles (most privileged first):
- admin_manager:    firm administration, billing, audit logs, staff management
- case_manager:     intake, assignment, matter status, workflow
- associate_lawyer: works on assigned matters

Each role inherits every permission of the roles below it. A permission is a
(resource, action) pair, written "resource:action".
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .db.models import InternalRole, UserStatus

logger = logging.getLogger(__name__)


class Resource(str, Enum):
    MATTER = "matter"
    DOCUMENT = "document"
    NOTE = "note"
    TIMELINE = "timeline"
    COMMUNICATION = "communication"
    EVIDENCE = "evidence"
    FILING = "filing"
    REPORT = "report"
    CASE_LOG = "case_log"
    CLIENT = "client"
    WORKFLOW = "workflow"
    USER = "user"
    FIRM = "firm"
    AUDIT_LOG = "audit_log"
    BILLING = "billing"


class Action(str, Enum):
    VIEW = "view"
    VIEW_ALL = "view_all"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    ASSIGN = "assign"
    REASSIGN = "reassign"
    ARCHIVE = "archive"
    CHANGE_STATUS = "change_status"
    CLAIM = "claim"
    OVERRIDE_LOCK = "override_lock"
    VIEW_WORKLOAD = "view_workload"
    VIEW_ANALYTICS = "view_analytics"
    MANAGE = "manage"
    INVITE = "invite"
    SUSPEND = "suspend"


PermissionPair = Tuple[Resource, Action]
RoleLike = Union[InternalRole, str, None]


def _grant(resource: Resource, *actions: Action) -> Set[PermissionPair]:
    return {(resource, a) for a in actions}


# Lower level = more privilege
ROLE_LEVELS: Dict[InternalRole, int] = {
    InternalRole.ADMIN_MANAGER: 1,
    InternalRole.CASE_MANAGER: 2,
    InternalRole.ASSOCIATE_LAWYER: 3,
}

ROLE_INHERITANCE: Dict[InternalRole, FrozenSet[InternalRole]] = {
    InternalRole.ADMIN_MANAGER: frozenset({InternalRole.CASE_MANAGER, InternalRole.ASSOCIATE_LAWYER}),
    InternalRole.CASE_MANAGER: frozenset({InternalRole.ASSOCIATE_LAWYER}),
    InternalRole.ASSOCIATE_LAWYER: frozenset(),
}

# Direct grants only; inherited grants are resolved in role_has_permission
ROLE_PERMISSIONS: Dict[InternalRole, Set[PermissionPair]] = {
    InternalRole.ASSOCIATE_LAWYER: (
        _grant(Resource.MATTER, Action.VIEW, Action.EDIT)
        | _grant(Resource.DOCUMENT, Action.VIEW, Action.CREATE, Action.EDIT, Action.DELETE)
        | _grant(Resource.NOTE, Action.VIEW, Action.CREATE, Action.EDIT)
        | _grant(Resource.TIMELINE, Action.VIEW)
        | _grant(Resource.COMMUNICATION, Action.VIEW, Action.CREATE)
        | _grant(Resource.EVIDENCE, Action.VIEW, Action.CREATE)
        | _grant(Resource.FILING, Action.VIEW, Action.CREATE)
        | _grant(Resource.REPORT, Action.CREATE)
        | _grant(Resource.CASE_LOG, Action.VIEW)
        | _grant(Resource.CLIENT, Action.VIEW)
    ),
    InternalRole.CASE_MANAGER: (
        _grant(
            Resource.MATTER,
            Action.VIEW_ALL, Action.CREATE, Action.ASSIGN, Action.REASSIGN,
            Action.ARCHIVE, Action.CHANGE_STATUS, Action.CLAIM, Action.OVERRIDE_LOCK,
        )
        | _grant(Resource.DOCUMENT, Action.VIEW_ALL)
        | _grant(Resource.REPORT, Action.VIEW_WORKLOAD, Action.VIEW_ANALYTICS)
        | _grant(Resource.WORKFLOW, Action.MANAGE)
    ),
    InternalRole.ADMIN_MANAGER: (
        _grant(Resource.FIRM, Action.MANAGE)
        | _grant(Resource.USER, Action.INVITE, Action.MANAGE, Action.SUSPEND)
        | _grant(Resource.AUDIT_LOG, Action.VIEW)
        | _grant(Resource.BILLING, Action.MANAGE)
        | _grant(Resource.REPORT, Action.VIEW_ALL)
        | _grant(Resource.MATTER, Action.DELETE)
    ),
}

# Older profiles carry short role names
_ROLE_ALIASES = {
    "admin": InternalRole.ADMIN_MANAGER,
    "associate": InternalRole.ASSOCIATE_LAWYER,
}


def normalize_role(role: RoleLike) -> Optional[InternalRole]:
    """Map a role value (enum, canonical string or legacy alias) to InternalRole."""
    if role is None:
        return None
    if isinstance(role, InternalRole):
        return role
    value = getattr(role, "value", role)
    if value in _ROLE_ALIASES:
        return _ROLE_ALIASES[value]
    try:
        return InternalRole(value)
    except ValueError:
        return None


def parse_permission(permission: Union[str, PermissionPair]) -> PermissionPair:
    """Accept "resource:action" or a (resource, action) tuple."""
    if isinstance(permission, tuple):
        resource, action = permission
    else:
        resource, _, action = permission.partition(":")
    return Resource(resource), Action(action)


def permissions_for_role(role: RoleLike) -> Set[PermissionPair]:
    """Direct plus inherited permissions of a role."""
    resolved = normalize_role(role)
    if resolved is None:
        return set()
    perms = set(ROLE_PERMISSIONS.get(resolved, set()))
    for parent in ROLE_INHERITANCE.get(resolved, frozenset()):
        perms |= ROLE_PERMISSIONS.get(parent, set())
    return perms


def role_has_permission(role: RoleLike, resource: Union[Resource, str], action: Union[Action, str]) -> bool:
    try:
        pair = (Resource(resource), Action(action))
    except ValueError:
        return False
    return pair in permissions_for_role(role)


def role_inherits_from(role: RoleLike, other: RoleLike) -> bool:
    """True if `role` is `other` or inherits its permissions."""
    resolved, parent = normalize_role(role), normalize_role(other)
    if resolved is None or parent is None:
        return False
    if resolved == parent:
        return True
    return parent in ROLE_INHERITANCE.get(resolved, frozenset())


def role_has_equal_or_higher_privilege(role: RoleLike, other: RoleLike) -> bool:
    resolved, target = normalize_role(role), normalize_role(other)
    if resolved is None or target is None:
        return False
    return ROLE_LEVELS[resolved] <= ROLE_LEVELS[target]


# =============================================================================
# PROFILE-LEVEL HELPERS
# =============================================================================

def _profile_user_id(profile) -> Optional[str]:
    return getattr(profile, "user_id", None) or getattr(profile, "id", None)


def has_permission(profile, resource: Union[Resource, str], action: Union[Action, str]) -> bool:
    if profile is None:
        return False
    return role_has_permission(getattr(profile, "internal_role", None), resource, action)


def is_assigned_to_matter(profile, matter) -> bool:
    user_id = _profile_user_id(profile)
    if not user_id:
        return False
    return user_id in (matter.assigned_associate_id, matter.assigned_case_manager_id)


def can_view_matter(profile, matter) -> bool:
    if profile is None or matter is None:
        return False
    if has_permission(profile, Resource.MATTER, Action.VIEW_ALL) and matter.firm_id == profile.firm_id:
        return True
    return has_permission(profile, Resource.MATTER, Action.VIEW) and is_assigned_to_matter(profile, matter)


def can_edit_matter(profile, matter) -> bool:
    if profile is None or matter is None:
        return False
    if (
        has_permission(profile, Resource.MATTER, Action.VIEW_ALL)
        and has_permission(profile, Resource.MATTER, Action.EDIT)
        and matter.firm_id == profile.firm_id
    ):
        return True
    return has_permission(profile, Resource.MATTER, Action.EDIT) and is_assigned_to_matter(profile, matter)


def can_assign_matters(profile) -> bool:
    return has_permission(profile, Resource.MATTER, Action.ASSIGN)


def can_manage_team(profile) -> bool:
    return has_permission(profile, Resource.USER, Action.MANAGE)


def can_view_audit_logs(profile) -> bool:
    return has_permission(profile, Resource.AUDIT_LOG, Action.VIEW)


def is_admin(profile) -> bool:
    return profile is not None and normalize_role(getattr(profile, "internal_role", None)) == InternalRole.ADMIN_MANAGER


def is_case_manager_or_higher(profile) -> bool:
    if profile is None:
        return False
    return role_has_equal_or_higher_privilege(getattr(profile, "internal_role", None), InternalRole.CASE_MANAGER)


# =============================================================================
# ROUTE GUARD / HOME RESOLUTION
# =============================================================================

@dataclass
class RouteAccess:
    """Outcome of a protected-route check"""
    allowed: bool
    reason: Optional[str] = None
    missing: List[str] = field(default_factory=list)


def _is_active(profile) -> bool:
    status = getattr(profile, "status", None)
    return getattr(status, "value", status) == UserStatus.ACTIVE.value


def check_route_access(
    profile,
    required_role: Union[RoleLike, Sequence[RoleLike]] = None,
    required_permission: Optional[Union[str, PermissionPair]] = None,
    required_any: Optional[Iterable[Union[str, PermissionPair]]] = None,
    required_all: Optional[Iterable[Union[str, PermissionPair]]] = None,
) -> RouteAccess:
    """
    Evaluate a protected route for a profile.

    Order: authentication, internal role, active status, required role
    (exact or inherited; with a list, any one of them), single permission,
    any-of, all-of.
    """
    if profile is None:
        return RouteAccess(False, "not authenticated")

    role = normalize_role(getattr(profile, "internal_role", None))
    if role is None:
        return RouteAccess(False, "internal users only")

    if not _is_active(profile):
        return RouteAccess(False, "account not active")

    if required_role is not None:
        wanted = required_role if isinstance(required_role, (list, tuple, set, frozenset)) else [required_role]
        if not any(role_inherits_from(role, w) for w in wanted):
            names = ", ".join(getattr(w, "value", str(w)) for w in wanted)
            return RouteAccess(False, f"requires role {names}")

    if required_permission is not None:
        resource, action = parse_permission(required_permission)
        if not role_has_permission(role, resource, action):
            return RouteAccess(False, "missing permission", [f"{resource.value}:{action.value}"])

    if required_any:
        pairs = [parse_permission(p) for p in required_any]
        if not any(role_has_permission(role, r, a) for r, a in pairs):
            return RouteAccess(False, "missing any of permissions", [f"{r.value}:{a.value}" for r, a in pairs])

    if required_all:
        pairs = [parse_permission(p) for p in required_all]
        missing = [f"{r.value}:{a.value}" for r, a in pairs if not role_has_permission(role, r, a)]
        if missing:
            return RouteAccess(False, "missing permissions", missing)

    return RouteAccess(True)


def resolve_user_home(profile) -> str:
    """Landing route for a profile in the internal portal."""
    if profile is None:
        return "/internal/login"
    if not _is_active(profile):
        return "/auth/locked"

    role = normalize_role(getattr(profile, "internal_role", None))
    if role == InternalRole.ADMIN_MANAGER:
        return "/internal/dashboard"
    if role == InternalRole.CASE_MANAGER:
        return "/internal/case-manager/dashboard"
    if role == InternalRole.ASSOCIATE_LAWYER:
        return "/internal/associate/dashboard"
    return "/auth/unauthorized"
