"""
Navigation tree filtering.
"""

from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from shared.logging import get_logger
from ..rules.models import Principal, Role

logger = get_logger("permissions.navigation")


class NavPermission(BaseModel):
    """Permission guarding a navigation entry."""
    resource: str
    action: str
    role_required: Optional[List[Role]] = None


class NavNode(BaseModel):
    """Menu entry with optional permission and children."""
    title: str
    url: Optional[str] = None
    permission: Optional[NavPermission] = None
    children: List["NavNode"] = Field(default_factory=list)


NavNode.model_rebuild()


def filter_navigation_tree(tree: List[NavNode], principal: Principal,
                           check: Callable[[str, str], bool]) -> List[NavNode]:
    """Return the entries the principal may see.

    A node is pruned when its permission is denied or its ``role_required``
    excludes the principal's role; a parent whose children were all pruned
    is pruned as well. The input tree is never modified.
    """
    visible = []
    for node in tree:
        filtered = _filter_node(node, principal, check)
        if filtered is not None:
            visible.append(filtered)
    return visible


def _filter_node(node: NavNode, principal: Principal,
                 check: Callable[[str, str], bool]) -> Optional[NavNode]:
    if node.permission is not None and not _permitted(node.permission, principal, check):
        return None

    children = filter_navigation_tree(node.children, principal, check)
    if node.children and not children:
        return None

    return NavNode(
        title=node.title,
        url=node.url,
        permission=node.permission.model_copy() if node.permission is not None else None,
        children=children,
    )


def _permitted(permission: NavPermission, principal: Principal,
               check: Callable[[str, str], bool]) -> bool:
    if permission.role_required and principal.role not in permission.role_required:
        return False

    try:
        return bool(check(permission.resource, permission.action))
    except Exception as e:
        logger.error(
            "Navigation permission check failed",
            principal_id=principal.principal_id,
            resource=permission.resource,
            action=permission.action,
            error=str(e)
        )
        return False
