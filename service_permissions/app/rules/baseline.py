"""
Role baseline table.

Default (resource, action) pairs each role holds when no user override and
no active group rule applies. The ``manage`` action implies the CRUD actions
on the same resource.
"""

from typing import Dict, FrozenSet, Iterable, Optional

from .models import PermissionKey, Role


RESOURCES = (
    "doctors",
    "patients",
    "staff",
    "specialties",
    "work-locations",
    "blogs",
    "questions",
    "reviews",
    "permissions",
)

MANAGE_ACTION = "manage"
MANAGE_IMPLIES = frozenset({"create", "read", "update", "delete"})


def _pairs(resource: str, actions: Iterable[str]) -> FrozenSet[PermissionKey]:
    return frozenset((resource, action) for action in actions)


ROLE_BASELINE: Dict[Role, FrozenSet[PermissionKey]] = {
    Role.SUPER_ADMIN: frozenset().union(
        *(_pairs(resource, [MANAGE_ACTION]) for resource in RESOURCES),
        {("system", "admin")},
    ),
    Role.ADMIN: frozenset().union(
        _pairs("doctors", [MANAGE_ACTION]),
        _pairs("specialties", [MANAGE_ACTION]),
        _pairs("work-locations", [MANAGE_ACTION]),
        _pairs("blogs", [MANAGE_ACTION]),
        _pairs("questions", [MANAGE_ACTION]),
        _pairs("patients", ["read", "create", "update"]),
        _pairs("reviews", ["read", "update"]),
        _pairs("staff", ["read"]),
        _pairs("permissions", ["read"]),
    ),
    Role.DOCTOR: frozenset().union(
        _pairs("doctors", ["read"]),
        _pairs("patients", ["read", "update"]),
        _pairs("specialties", ["read"]),
        _pairs("work-locations", ["read"]),
        _pairs("blogs", ["read", "create"]),
        _pairs("questions", ["read", "update"]),
    ),
}


def candidate_keys(resource: str, action: str) -> tuple:
    """Keys consulted for (resource, action), most specific first."""
    if action in MANAGE_IMPLIES:
        return ((resource, action), (resource, MANAGE_ACTION))
    return ((resource, action),)


def baseline_grant(role: Role, resource: str, action: str,
                   table: Optional[Dict[Role, FrozenSet[PermissionKey]]] = None) -> Optional[PermissionKey]:
    """Return the baseline key that grants (resource, action), if any."""
    defaults = (table if table is not None else ROLE_BASELINE).get(role, frozenset())
    for key in candidate_keys(resource, action):
        if key in defaults:
            return key
    return None


def role_allows(role: Role, resource: str, action: str,
                table: Optional[Dict[Role, FrozenSet[PermissionKey]]] = None) -> bool:
    """Check whether the role's baseline grants (resource, action)."""
    return baseline_grant(role, resource, action, table) is not None


def baseline_keys(role: Role,
                  table: Optional[Dict[Role, FrozenSet[PermissionKey]]] = None) -> FrozenSet[PermissionKey]:
    """All keys a role's baseline grants, with manage expanded to CRUD."""
    defaults = (table if table is not None else ROLE_BASELINE).get(role, frozenset())
    expanded = set(defaults)
    for resource, action in defaults:
        if action == MANAGE_ACTION:
            expanded.update((resource, implied) for implied in MANAGE_IMPLIES)
    return frozenset(expanded)
