"""
Permission catalog operations.
"""

from typing import Dict, Any, Optional, List, TYPE_CHECKING

from shared.errors import DuplicatePermission, NotFound, ValidationError
from ..rules.models import Permission, Role
from .base import EngineService

if TYPE_CHECKING:
    from ..main import PermissionEngine


PERMISSION_PATCH_FIELDS = frozenset({"resource", "action", "description", "role_required"})


class PermissionCatalog(EngineService):
    """Create, update, delete and list catalog entries."""

    def __init__(self, engine: "PermissionEngine"):
        super().__init__(engine, "permissions.catalog")

    def list_permissions(self) -> List[Permission]:
        """Catalog entries ordered by (resource, action)."""
        snapshot = self.engine.snapshot
        if snapshot is None:
            return []
        return sorted(snapshot.permissions.values(), key=lambda p: p.key)

    def get_permission(self, permission_id: str) -> Permission:
        snapshot = self.engine.snapshot
        permission = snapshot.permissions.get(permission_id) if snapshot is not None else None
        if permission is None:
            raise NotFound("Permission", permission_id)
        return permission

    async def create_permission(self, resource: str, action: str, description: str = "",
                                role_required: Optional[List[Role]] = None) -> Permission:
        """Add a (resource, action) pair to the catalog."""
        operation = "create_permission"
        if not resource or not action:
            raise self._reject(operation, ValidationError(
                "Resource and action are required", {"resource": resource, "action": action}
            ))

        snapshot = await self._snapshot()
        if snapshot.permission_by_key(resource, action) is not None:
            raise self._reject(operation, DuplicatePermission(resource, action))

        permission = await self._call_store(
            operation, self.engine.store.create_permission,
            resource, action, description, role_required
        )
        self.engine.snapshot.put_permission(permission)

        if permission.role_required:
            self._invalidate_all(operation)

        self.logger.info("Permission created", permission_id=permission.id,
                         resource=resource, action=action)
        return permission

    async def update_permission(self, permission_id: str, patch: Dict[str, Any]) -> Permission:
        """Apply a partial update; renames re-check uniqueness."""
        operation = "update_permission"
        unknown = set(patch) - PERMISSION_PATCH_FIELDS
        if unknown:
            raise self._reject(operation, ValidationError(
                "Unsupported permission fields", {"fields": sorted(unknown)}
            ))

        snapshot = await self._snapshot()
        current = snapshot.permissions.get(permission_id)
        if current is None:
            raise self._reject(operation, NotFound("Permission", permission_id))
        proposed = self._validated_patch(operation, current, patch)

        existing = snapshot.permission_by_key(proposed.resource, proposed.action)
        if existing is not None and existing.id != permission_id:
            raise self._reject(operation, DuplicatePermission(proposed.resource, proposed.action))

        changes = {name: getattr(proposed, name) for name in patch}
        updated = await self._call_store(
            operation, self.engine.store.update_permission, permission_id, changes
        )
        self.engine.snapshot.put_permission(updated)

        # A key or role_required change can alter any principal's decision
        if updated.key != current.key or updated.role_required != current.role_required:
            self._invalidate_all(operation)

        self.logger.info("Permission updated", permission_id=permission_id,
                         fields=sorted(patch))
        return updated

    async def delete_permission(self, permission_id: str) -> None:
        """Remove a catalog entry together with every row referencing it."""
        operation = "delete_permission"
        snapshot = await self._snapshot()
        current = snapshot.permissions.get(permission_id)
        if current is None:
            raise self._reject(operation, NotFound("Permission", permission_id))

        await self._call_store(operation, self.engine.store.delete_permission, permission_id)
        affected = self.engine.snapshot.remove_permission(permission_id)

        if current.role_required:
            self._invalidate_all(operation)
        else:
            self._invalidate(operation, affected)

        self.logger.info("Permission deleted", permission_id=permission_id,
                         resource=current.resource, action=current.action,
                         affected_principals=len(affected))
