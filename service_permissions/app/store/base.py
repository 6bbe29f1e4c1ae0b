"""
External permission store boundary.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List

from ..rules.models import (
    Effect, GroupMembership, GroupPermission, Permission, PermissionCondition,
    PermissionGroup, PermissionSnapshot, Role, UserPermission,
)


class PermissionStore(ABC):
    """Remote storage for the catalog, groups, rows and memberships.

    The store is the sole point of serialization for writes. Every method
    may suspend; failures other than domain errors are reported by the
    engine as ``StoreUnavailable``.
    """

    @abstractmethod
    async def fetch_snapshot(self) -> PermissionSnapshot:
        """Fetch the full read model."""

    @abstractmethod
    async def create_permission(self, resource: str, action: str, description: str = "",
                                role_required: Optional[List[Role]] = None) -> Permission:
        """Create a catalog entry."""

    @abstractmethod
    async def update_permission(self, permission_id: str, changes: Dict[str, Any]) -> Permission:
        """Apply a partial update to a catalog entry."""

    @abstractmethod
    async def delete_permission(self, permission_id: str) -> None:
        """Delete a catalog entry and every row referencing it."""

    @abstractmethod
    async def create_group(self, name: str, tenant_id: str, description: str = "",
                           is_active: bool = True) -> PermissionGroup:
        """Create a permission group."""

    @abstractmethod
    async def update_group(self, group_id: str, changes: Dict[str, Any]) -> PermissionGroup:
        """Apply a partial update to a group."""

    @abstractmethod
    async def delete_group(self, group_id: str) -> None:
        """Delete a group with its rows and memberships."""

    @abstractmethod
    async def assign_group_permission(self, group_id: str, permission_id: str, effect: Effect,
                                      conditions: Optional[List[PermissionCondition]] = None) -> GroupPermission:
        """Create or replace a group permission row."""

    @abstractmethod
    async def revoke_group_permission(self, group_id: str, permission_id: str) -> None:
        """Remove a group permission row."""

    @abstractmethod
    async def assign_user_permission(self, principal_id: str, permission_id: str, effect: Effect,
                                     conditions: Optional[List[PermissionCondition]] = None) -> UserPermission:
        """Create or replace a user override row."""

    @abstractmethod
    async def revoke_user_permission(self, principal_id: str, permission_id: str) -> None:
        """Remove a user override row."""

    @abstractmethod
    async def add_membership(self, principal_id: str, group_id: str) -> GroupMembership:
        """Add a principal to a group."""

    @abstractmethod
    async def remove_membership(self, principal_id: str, group_id: str) -> None:
        """Remove a principal from a group."""
