"""
Assignment service for groups, rows and memberships.
"""

from typing import Dict, Any, Optional, List, TYPE_CHECKING

from shared.errors import (
    DuplicateGroup, NotFound, ProtectedGroupViolation, ValidationError,
)
from ..cache.effective_cache import CacheEntry
from ..rules.models import (
    Effect, GroupMembership, GroupPermission, PermissionCondition,
    PermissionGroup, PermissionSnapshot, UserPermission,
)
from .base import EngineService

if TYPE_CHECKING:
    from ..main import PermissionEngine


GROUP_PATCH_FIELDS = frozenset({"name", "description", "tenant_id", "is_active"})


class AssignmentService(EngineService):
    """Administrative mutations with exact cache invalidation.

    Every operation computes the set of principals whose decisions may
    change and invalidates exactly that set once the store call succeeds:
    group rows and group lifecycle affect all current members, user rows
    and memberships affect one principal.
    """

    def __init__(self, engine: "PermissionEngine"):
        super().__init__(engine, "permissions.assignment")

    @property
    def protected_group_name(self) -> str:
        return self.engine.config.protected_group_name

    # Group permission rows

    async def assign_group_permission(self, group_id: str, permission_id: str, effect: Effect,
                                      conditions: Optional[List[PermissionCondition]] = None) -> GroupPermission:
        """Grant or deny a permission to every member of a group."""
        operation = "assign_group_permission"
        effect = self._effect(operation, effect)
        snapshot = await self._snapshot()
        self._require_group(operation, snapshot, group_id)
        self._require_permission(operation, snapshot, permission_id)

        row = await self._call_store(
            operation, self.engine.store.assign_group_permission,
            group_id, permission_id, effect, conditions
        )
        snapshot = self.engine.snapshot
        snapshot.put_group_permission(row)
        self._invalidate(operation, snapshot.members_of(group_id))

        self.logger.info("Group permission assigned", group_id=group_id,
                         permission_id=permission_id, effect=row.effect.value)
        return row

    async def revoke_group_permission(self, group_id: str, permission_id: str) -> None:
        operation = "revoke_group_permission"
        snapshot = await self._snapshot()
        if (group_id, permission_id) not in snapshot.group_permissions:
            raise self._reject(operation, NotFound("GroupPermission", f"{group_id}:{permission_id}"))

        await self._call_store(
            operation, self.engine.store.revoke_group_permission, group_id, permission_id
        )
        snapshot = self.engine.snapshot
        snapshot.remove_group_permission(group_id, permission_id)
        self._invalidate(operation, snapshot.members_of(group_id))

        self.logger.info("Group permission revoked", group_id=group_id,
                         permission_id=permission_id)

    # User overrides

    async def assign_user_permission(self, principal_id: str, permission_id: str, effect: Effect,
                                     conditions: Optional[List[PermissionCondition]] = None) -> UserPermission:
        """Set a direct override for one principal."""
        operation = "assign_user_permission"
        effect = self._effect(operation, effect)
        snapshot = await self._snapshot()
        self._require_principal(operation, snapshot, principal_id)
        self._require_permission(operation, snapshot, permission_id)

        row = await self._call_store(
            operation, self.engine.store.assign_user_permission,
            principal_id, permission_id, effect, conditions
        )
        self.engine.snapshot.put_user_permission(row)
        self._invalidate(operation, [principal_id])

        self.logger.info("User permission assigned", principal_id=principal_id,
                         permission_id=permission_id, effect=row.effect.value)
        return row

    async def revoke_user_permission(self, principal_id: str, permission_id: str) -> None:
        operation = "revoke_user_permission"
        snapshot = await self._snapshot()
        if (principal_id, permission_id) not in snapshot.user_permissions:
            raise self._reject(operation, NotFound("UserPermission", f"{principal_id}:{permission_id}"))

        await self._call_store(
            operation, self.engine.store.revoke_user_permission, principal_id, permission_id
        )
        self.engine.snapshot.remove_user_permission(principal_id, permission_id)
        self._invalidate(operation, [principal_id])

        self.logger.info("User permission revoked", principal_id=principal_id,
                         permission_id=permission_id)

    # Memberships

    async def add_membership(self, principal_id: str, group_id: str) -> GroupMembership:
        """Add a principal to a group; an existing membership is left as is."""
        operation = "add_membership"
        snapshot = await self._snapshot()
        self._require_principal(operation, snapshot, principal_id)
        self._require_group(operation, snapshot, group_id)

        if (principal_id, group_id) in snapshot.memberships:
            self.logger.debug("Membership already present", principal_id=principal_id,
                              group_id=group_id)
            return GroupMembership(principal_id=principal_id, group_id=group_id)

        membership = await self._call_store(
            operation, self.engine.store.add_membership, principal_id, group_id
        )
        self.engine.snapshot.add_membership(principal_id, group_id)
        self._invalidate(operation, [principal_id])

        self.logger.info("Membership added", principal_id=principal_id, group_id=group_id)
        return membership

    async def remove_membership(self, principal_id: str, group_id: str) -> None:
        operation = "remove_membership"
        snapshot = await self._snapshot()
        if (principal_id, group_id) not in snapshot.memberships:
            raise self._reject(operation, NotFound("GroupMembership", f"{principal_id}:{group_id}"))

        await self._call_store(
            operation, self.engine.store.remove_membership, principal_id, group_id
        )
        self.engine.snapshot.remove_membership(principal_id, group_id)
        self._invalidate(operation, [principal_id])

        self.logger.info("Membership removed", principal_id=principal_id, group_id=group_id)

    # Group lifecycle

    async def create_group(self, name: str, tenant_id: str, description: str = "",
                           is_active: bool = True) -> PermissionGroup:
        operation = "create_group"
        if not name:
            raise self._reject(operation, ValidationError("Group name is required"))

        snapshot = await self._snapshot()
        if snapshot.group_by_name(name, tenant_id) is not None:
            raise self._reject(operation, DuplicateGroup(name, tenant_id))

        group = await self._call_store(
            operation, self.engine.store.create_group, name, tenant_id, description, is_active
        )
        self.engine.snapshot.put_group(group)

        self.logger.info("Group created", group_id=group.id, name=name, tenant_id=tenant_id)
        return group

    async def update_group(self, group_id: str, patch: Dict[str, Any]) -> PermissionGroup:
        """Apply a partial update to a group.

        The protected group can neither be renamed nor deactivated. A change
        of ``is_active`` invalidates every member.
        """
        operation = "update_group"
        unknown = set(patch) - GROUP_PATCH_FIELDS
        if unknown:
            raise self._reject(operation, ValidationError(
                "Unsupported group fields", {"fields": sorted(unknown)}
            ))

        snapshot = await self._snapshot()
        current = self._require_group(operation, snapshot, group_id)
        proposed = self._validated_patch(operation, current, patch)

        if current.name == self.protected_group_name:
            if proposed.name != current.name:
                raise self._reject(operation, ProtectedGroupViolation(current.name, "renamed"))
            if not proposed.is_active:
                raise self._reject(operation, ProtectedGroupViolation(current.name, "deactivated"))

        existing = snapshot.group_by_name(proposed.name, proposed.tenant_id)
        if existing is not None and existing.id != group_id:
            raise self._reject(operation, DuplicateGroup(proposed.name, proposed.tenant_id))

        changes = {name: getattr(proposed, name) for name in patch}
        updated = await self._call_store(
            operation, self.engine.store.update_group, group_id, changes
        )
        snapshot = self.engine.snapshot
        snapshot.put_group(updated)

        if updated.is_active != current.is_active:
            self._invalidate(operation, snapshot.members_of(group_id))

        self.logger.info("Group updated", group_id=group_id, fields=sorted(patch),
                         is_active=updated.is_active)
        return updated

    async def deactivate_group(self, group_id: str) -> PermissionGroup:
        return await self.update_group(group_id, {"is_active": False})

    async def activate_group(self, group_id: str) -> PermissionGroup:
        return await self.update_group(group_id, {"is_active": True})

    async def delete_group(self, group_id: str) -> None:
        """Delete a group with its rows and memberships."""
        operation = "delete_group"
        snapshot = await self._snapshot()
        current = self._require_group(operation, snapshot, group_id)
        if current.name == self.protected_group_name:
            raise self._reject(operation, ProtectedGroupViolation(current.name, "deleted"))

        await self._call_store(operation, self.engine.store.delete_group, group_id)
        members = self.engine.snapshot.remove_group(group_id)
        self._invalidate(operation, members)

        self.logger.info("Group deleted", group_id=group_id, name=current.name,
                         former_members=len(members))

    # Cache maintenance

    async def refresh_principal_cache(self, principal_id: str) -> CacheEntry:
        """Re-fetch the snapshot, then recompute the principal's decisions now."""
        await self.engine.load()
        snapshot = self.engine.snapshot

        principal = snapshot.principals.get(principal_id)
        current = self.engine.current_principal
        if principal is None and current is not None and current.principal_id == principal_id:
            principal = current
        if principal is None:
            raise NotFound("Principal", principal_id)

        return self.engine.cache.refresh(principal)

    # Validation helpers

    def _require_group(self, operation: str, snapshot: PermissionSnapshot,
                       group_id: str) -> PermissionGroup:
        group = snapshot.groups.get(group_id)
        if group is None:
            raise self._reject(operation, NotFound("PermissionGroup", group_id))
        return group

    def _require_permission(self, operation: str, snapshot: PermissionSnapshot,
                            permission_id: str) -> None:
        if permission_id not in snapshot.permissions:
            raise self._reject(operation, NotFound("Permission", permission_id))

    def _require_principal(self, operation: str, snapshot: PermissionSnapshot,
                           principal_id: str) -> None:
        if principal_id not in snapshot.principals:
            raise self._reject(operation, NotFound("Principal", principal_id))
