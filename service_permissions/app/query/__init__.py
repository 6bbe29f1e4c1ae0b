"""
Query API: permission gates and navigation filtering.
"""

from .gates import PermissionGate
from .navigation import NavNode, NavPermission, filter_navigation_tree

__all__ = ["PermissionGate", "NavNode", "NavPermission", "filter_navigation_tree"]
