"""
Administrative services: permission catalog, assignments and statistics.
"""

from .assignment import AssignmentService
from .catalog import PermissionCatalog
from .stats import permission_stats

__all__ = ["AssignmentService", "PermissionCatalog", "permission_stats"]
