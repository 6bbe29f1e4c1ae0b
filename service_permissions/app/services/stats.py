"""
Permission usage statistics.
"""

from collections import Counter
from typing import Dict, Any

from ..rules.models import PermissionSnapshot


def permission_stats(snapshot: PermissionSnapshot, top: int = 5) -> Dict[str, Any]:
    """Totals plus the most referenced permissions and the largest groups."""
    usage = Counter()
    for _, permission_id in snapshot.group_permissions:
        usage[permission_id] += 1
    for _, permission_id in snapshot.user_permissions:
        usage[permission_id] += 1

    most_used = []
    for permission_id, count in sorted(usage.items(), key=lambda item: (-item[1], item[0])):
        permission = snapshot.permissions.get(permission_id)
        if permission is None:
            continue
        most_used.append({
            "permission_id": permission_id,
            "resource": permission.resource,
            "action": permission.action,
            "usage": count,
        })

    member_counts = Counter(group_id for _, group_id in snapshot.memberships)
    largest = sorted(
        snapshot.groups.values(),
        key=lambda group: (-member_counts[group.id], group.name, group.id)
    )

    return {
        "total_permissions": len(snapshot.permissions),
        "total_groups": len(snapshot.groups),
        "active_groups": sum(1 for group in snapshot.groups.values() if group.is_active),
        "total_user_permissions": len(snapshot.user_permissions),
        "total_group_permissions": len(snapshot.group_permissions),
        "total_memberships": len(snapshot.memberships),
        "most_used_permissions": most_used[:top],
        "largest_groups": [
            {"group_id": group.id, "name": group.name, "members": member_counts[group.id]}
            for group in largest[:top]
        ],
    }
