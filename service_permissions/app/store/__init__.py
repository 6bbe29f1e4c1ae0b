"""
Store package.

The engine never persists anything itself. ``PermissionStore`` describes
the external collaborator it fetches snapshots from and delegates every
mutation to; ``InMemoryPermissionStore`` is a reference implementation.
"""

from .base import PermissionStore
from .memory import InMemoryPermissionStore

__all__ = ["PermissionStore", "InMemoryPermissionStore"]
