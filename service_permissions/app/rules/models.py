"""
Permission data models for the clinic permissions engine.
"""

import copy
import uuid
from typing import Dict, Any, Optional, List, Set, Tuple, Union, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


PermissionKey = Tuple[str, str]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid.uuid4())


class Effect(str, Enum):
    """Effect attached to a group or user permission row."""
    ALLOW = "ALLOW"
    DENY = "DENY"


class Decision(str, Enum):
    """Final outcome of a resolution."""
    ALLOW = "ALLOW"
    DENY = "DENY"


class Role(str, Enum):
    """Fixed principal roles."""
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    DOCTOR = "DOCTOR"


class DecisionSource(str, Enum):
    """Precedence step that produced a decision."""
    USER_OVERRIDE = "user_override"
    GROUP = "group"
    ROLE_BASELINE = "role_baseline"
    ROLE_REQUIRED = "role_required"
    CONTEXT = "context"
    ERROR = "error"


class ConditionOperator(str, Enum):
    """Operators for conditional permission rows."""
    EQUALS = "eq"
    NOT_EQUALS = "ne"
    IN = "in"
    CONTAINS = "contains"


class PermissionCondition(BaseModel):
    """Condition evaluated against a caller-supplied context."""
    field: str = Field(..., min_length=1, description="Context key")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Union[str, int, float, bool, None, List[Union[str, int, float, bool]]] = Field(
        None, description="Value compared against the context"
    )


class Permission(BaseModel):
    """A (resource, action) capability in the catalog."""
    id: str = Field(default_factory=new_id)
    resource: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    description: str = ""
    role_required: Optional[List[Role]] = Field(
        None, description="Roles allowed to exercise this permission regardless of grants"
    )
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def key(self) -> PermissionKey:
        return (self.resource, self.action)


class PermissionGroup(BaseModel):
    """Named, tenant-labeled collection of permission rows and members."""
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    description: str = ""
    tenant_id: str = "default"
    is_active: bool = True
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class GroupPermission(BaseModel):
    """Effect granted or denied to every member of a group."""
    group_id: str
    permission_id: str
    effect: Effect = Effect.ALLOW
    conditions: List[PermissionCondition] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)


class GroupMembership(BaseModel):
    """Principal membership in a group."""
    principal_id: str
    group_id: str
    created_at: datetime = Field(default_factory=_now)


class UserPermission(BaseModel):
    """Direct per-principal override."""
    principal_id: str
    permission_id: str
    effect: Effect = Effect.ALLOW
    conditions: List[PermissionCondition] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)


class Principal(BaseModel):
    """Staff or doctor account, as seen by the engine."""
    principal_id: str = Field(..., min_length=1)
    role: Role
    tenant_id: Optional[str] = None
    display_name: str = ""


@dataclass
class ResolvedDecision:
    """Result of resolving one (principal, resource, action)."""
    decision: Decision
    source: DecisionSource
    reason: str = ""
    matched_rules: List[str] = field(default_factory=list)
    # Condition sets of the allowing rows; an empty set means unconditional
    conditions: List[List[PermissionCondition]] = field(default_factory=list)
    # Catalog key whose row or baseline entry produced the decision
    granted_key: Optional[PermissionKey] = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW


@dataclass
class PermissionSnapshot:
    """In-memory read model of the permission store.

    Rows are keyed by their natural identity so insertion order never
    matters to resolution. The ``put_*``/``remove_*`` helpers are used by
    the in-memory store and by the engine to write successful mutations
    through to its local copy.
    """
    permissions: Dict[str, Permission] = field(default_factory=dict)
    groups: Dict[str, PermissionGroup] = field(default_factory=dict)
    group_permissions: Dict[Tuple[str, str], GroupPermission] = field(default_factory=dict)
    user_permissions: Dict[Tuple[str, str], UserPermission] = field(default_factory=dict)
    memberships: Set[Tuple[str, str]] = field(default_factory=set)
    principals: Dict[str, Principal] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=_now)
    _key_index: Dict[PermissionKey, str] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        self._key_index = {permission.key: permission.id for permission in self.permissions.values()}

    @classmethod
    def from_rows(
        cls,
        permissions: Iterable[Permission] = (),
        groups: Iterable[PermissionGroup] = (),
        group_permissions: Iterable[GroupPermission] = (),
        user_permissions: Iterable[UserPermission] = (),
        memberships: Iterable[GroupMembership] = (),
        principals: Iterable[Principal] = (),
    ) -> "PermissionSnapshot":
        """Build a snapshot from flat row lists as returned by a store."""
        snapshot = cls()
        for permission in permissions:
            snapshot.put_permission(permission)
        for group in groups:
            snapshot.put_group(group)
        for row in group_permissions:
            snapshot.put_group_permission(row)
        for row in user_permissions:
            snapshot.put_user_permission(row)
        for membership in memberships:
            snapshot.add_membership(membership.principal_id, membership.group_id)
        for principal in principals:
            snapshot.put_principal(principal)
        return snapshot

    def copy(self) -> "PermissionSnapshot":
        return copy.deepcopy(self)

    # Lookups

    def permission_by_key(self, resource: str, action: str) -> Optional[Permission]:
        permission_id = self._key_index.get((resource, action))
        return self.permissions.get(permission_id) if permission_id is not None else None

    def group_by_name(self, name: str, tenant_id: str) -> Optional[PermissionGroup]:
        for group in self.groups.values():
            if group.name == name and group.tenant_id == tenant_id:
                return group
        return None

    def groups_of(self, principal_id: str) -> List[str]:
        return sorted(group_id for member_id, group_id in self.memberships if member_id == principal_id)

    def members_of(self, group_id: str) -> Set[str]:
        return {member_id for member_id, member_group in self.memberships if member_group == group_id}

    def holders_of(self, permission_id: str) -> Set[str]:
        """Principals whose decisions depend on rows for this permission."""
        affected = {
            principal_id for principal_id, row_permission in self.user_permissions
            if row_permission == permission_id
        }
        for group_id, row_permission in self.group_permissions:
            if row_permission == permission_id:
                affected |= self.members_of(group_id)
        return affected

    # Write-through helpers

    def put_permission(self, permission: Permission) -> None:
        previous = self.permissions.get(permission.id)
        if previous is not None:
            self._key_index.pop(previous.key, None)
        self.permissions[permission.id] = permission
        self._key_index[permission.key] = permission.id

    def remove_permission(self, permission_id: str) -> Set[str]:
        """Remove a permission and cascade its rows; return affected principals."""
        affected = self.holders_of(permission_id)
        removed = self.permissions.pop(permission_id, None)
        if removed is not None:
            self._key_index.pop(removed.key, None)
        for row_key in [k for k in self.group_permissions if k[1] == permission_id]:
            del self.group_permissions[row_key]
        for row_key in [k for k in self.user_permissions if k[1] == permission_id]:
            del self.user_permissions[row_key]
        return affected

    def put_group(self, group: PermissionGroup) -> None:
        self.groups[group.id] = group

    def remove_group(self, group_id: str) -> Set[str]:
        """Remove a group with its rows and memberships; return former members."""
        members = self.members_of(group_id)
        self.groups.pop(group_id, None)
        for row_key in [k for k in self.group_permissions if k[0] == group_id]:
            del self.group_permissions[row_key]
        self.memberships = {m for m in self.memberships if m[1] != group_id}
        return members

    def put_group_permission(self, row: GroupPermission) -> None:
        self.group_permissions[(row.group_id, row.permission_id)] = row

    def remove_group_permission(self, group_id: str, permission_id: str) -> Optional[GroupPermission]:
        return self.group_permissions.pop((group_id, permission_id), None)

    def put_user_permission(self, row: UserPermission) -> None:
        self.user_permissions[(row.principal_id, row.permission_id)] = row

    def remove_user_permission(self, principal_id: str, permission_id: str) -> Optional[UserPermission]:
        return self.user_permissions.pop((principal_id, permission_id), None)

    def add_membership(self, principal_id: str, group_id: str) -> None:
        self.memberships.add((principal_id, group_id))

    def remove_membership(self, principal_id: str, group_id: str) -> bool:
        if (principal_id, group_id) not in self.memberships:
            return False
        self.memberships.discard((principal_id, group_id))
        return True

    def put_principal(self, principal: Principal) -> None:
        self.principals[principal.principal_id] = principal

    def summary(self) -> Dict[str, Any]:
        return {
            "permissions": len(self.permissions),
            "groups": len(self.groups),
            "group_permissions": len(self.group_permissions),
            "user_permissions": len(self.user_permissions),
            "memberships": len(self.memberships),
            "principals": len(self.principals),
        }
