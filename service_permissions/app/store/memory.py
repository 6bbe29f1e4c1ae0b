"""
In-memory permission store.

Reference implementation of the store boundary, used by tests and local
runs. It enforces the same uniqueness and existence rules a backend would.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List

from pydantic import BaseModel

from shared.errors import DuplicateGroup, DuplicatePermission, NotFound
from shared.logging import get_logger
from ..rules.models import (
    Effect, GroupMembership, GroupPermission, Permission, PermissionCondition,
    PermissionGroup, PermissionSnapshot, Principal, Role, UserPermission,
)
from .base import PermissionStore


class InMemoryPermissionStore(PermissionStore):
    """Permission store backed by a private snapshot."""

    def __init__(self, snapshot: Optional[PermissionSnapshot] = None):
        self.logger = get_logger("permissions.store.memory")
        self._data = snapshot.copy() if snapshot is not None else PermissionSnapshot()
        self._lock = asyncio.Lock()
        self.fetch_count = 0

    def add_principal(self, principal: Principal) -> None:
        """Register an externally owned principal."""
        self._data.put_principal(principal)

    async def fetch_snapshot(self) -> PermissionSnapshot:
        async with self._lock:
            self.fetch_count += 1
            snapshot = self._data.copy()
            snapshot.fetched_at = datetime.now(timezone.utc)
            self.logger.debug("Snapshot served", **snapshot.summary())
            return snapshot

    async def create_permission(self, resource: str, action: str, description: str = "",
                                role_required: Optional[List[Role]] = None) -> Permission:
        async with self._lock:
            if self._data.permission_by_key(resource, action) is not None:
                raise DuplicatePermission(resource, action)
            permission = Permission(
                resource=resource,
                action=action,
                description=description,
                role_required=role_required,
            )
            self._data.put_permission(permission)
            return permission.model_copy(deep=True)

    async def update_permission(self, permission_id: str, changes: Dict[str, Any]) -> Permission:
        async with self._lock:
            current = self._require_permission(permission_id)
            updated = self._patched(current, changes)
            existing = self._data.permission_by_key(updated.resource, updated.action)
            if existing is not None and existing.id != permission_id:
                raise DuplicatePermission(updated.resource, updated.action)
            self._data.put_permission(updated)
            return updated.model_copy(deep=True)

    async def delete_permission(self, permission_id: str) -> None:
        async with self._lock:
            self._require_permission(permission_id)
            self._data.remove_permission(permission_id)

    async def create_group(self, name: str, tenant_id: str, description: str = "",
                           is_active: bool = True) -> PermissionGroup:
        async with self._lock:
            if self._data.group_by_name(name, tenant_id) is not None:
                raise DuplicateGroup(name, tenant_id)
            group = PermissionGroup(
                name=name,
                tenant_id=tenant_id,
                description=description,
                is_active=is_active,
            )
            self._data.put_group(group)
            return group.model_copy(deep=True)

    async def update_group(self, group_id: str, changes: Dict[str, Any]) -> PermissionGroup:
        async with self._lock:
            current = self._require_group(group_id)
            updated = self._patched(current, changes)
            existing = self._data.group_by_name(updated.name, updated.tenant_id)
            if existing is not None and existing.id != group_id:
                raise DuplicateGroup(updated.name, updated.tenant_id)
            self._data.put_group(updated)
            return updated.model_copy(deep=True)

    async def delete_group(self, group_id: str) -> None:
        async with self._lock:
            self._require_group(group_id)
            self._data.remove_group(group_id)

    async def assign_group_permission(self, group_id: str, permission_id: str, effect: Effect,
                                      conditions: Optional[List[PermissionCondition]] = None) -> GroupPermission:
        async with self._lock:
            self._require_group(group_id)
            self._require_permission(permission_id)
            row = GroupPermission(
                group_id=group_id,
                permission_id=permission_id,
                effect=effect,
                conditions=list(conditions or []),
            )
            self._data.put_group_permission(row)
            return row.model_copy(deep=True)

    async def revoke_group_permission(self, group_id: str, permission_id: str) -> None:
        async with self._lock:
            if self._data.remove_group_permission(group_id, permission_id) is None:
                raise NotFound("GroupPermission", f"{group_id}:{permission_id}")

    async def assign_user_permission(self, principal_id: str, permission_id: str, effect: Effect,
                                     conditions: Optional[List[PermissionCondition]] = None) -> UserPermission:
        async with self._lock:
            self._require_principal(principal_id)
            self._require_permission(permission_id)
            row = UserPermission(
                principal_id=principal_id,
                permission_id=permission_id,
                effect=effect,
                conditions=list(conditions or []),
            )
            self._data.put_user_permission(row)
            return row.model_copy(deep=True)

    async def revoke_user_permission(self, principal_id: str, permission_id: str) -> None:
        async with self._lock:
            if self._data.remove_user_permission(principal_id, permission_id) is None:
                raise NotFound("UserPermission", f"{principal_id}:{permission_id}")

    async def add_membership(self, principal_id: str, group_id: str) -> GroupMembership:
        async with self._lock:
            self._require_principal(principal_id)
            self._require_group(group_id)
            self._data.add_membership(principal_id, group_id)
            return GroupMembership(principal_id=principal_id, group_id=group_id)

    async def remove_membership(self, principal_id: str, group_id: str) -> None:
        async with self._lock:
            if not self._data.remove_membership(principal_id, group_id):
                raise NotFound("GroupMembership", f"{principal_id}:{group_id}")

    def _require_permission(self, permission_id: str) -> Permission:
        permission = self._data.permissions.get(permission_id)
        if permission is None:
            raise NotFound("Permission", permission_id)
        return permission

    def _require_group(self, group_id: str) -> PermissionGroup:
        group = self._data.groups.get(group_id)
        if group is None:
            raise NotFound("PermissionGroup", group_id)
        return group

    def _require_principal(self, principal_id: str) -> Principal:
        principal = self._data.principals.get(principal_id)
        if principal is None:
            raise NotFound("Principal", principal_id)
        return principal

    @staticmethod
    def _patched(current: BaseModel, changes: Dict[str, Any]) -> BaseModel:
        return type(current).model_validate({
            **current.model_dump(), **changes, "updated_at": datetime.now(timezone.utc)
        })
