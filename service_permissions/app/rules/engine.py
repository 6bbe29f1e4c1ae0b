"""
Policy resolver for the clinic permissions engine.
"""

from typing import Dict, Any, Optional, List, Callable, FrozenSet

from shared.logging import get_logger
from .baseline import ROLE_BASELINE, MANAGE_ACTION, MANAGE_IMPLIES, baseline_grant, baseline_keys, candidate_keys
from .models import (
    ConditionOperator, Decision, DecisionSource, Effect, PermissionCondition,
    PermissionKey, PermissionSnapshot, Principal, ResolvedDecision, Role,
)

ContextPredicate = Callable[[Dict[str, Any]], bool]


def evaluate_condition(condition: PermissionCondition, context: Dict[str, Any]) -> bool:
    """Evaluate a single condition against the context."""
    context_value = context.get(condition.field)

    if condition.operator == ConditionOperator.EQUALS:
        return context_value == condition.value

    if condition.operator == ConditionOperator.NOT_EQUALS:
        return context_value != condition.value

    if condition.operator == ConditionOperator.IN:
        return isinstance(condition.value, list) and context_value in condition.value

    if condition.operator == ConditionOperator.CONTAINS:
        return isinstance(context_value, (list, tuple, set)) and condition.value in context_value

    return False


def evaluate_conditions(conditions: List[PermissionCondition],
                        context: Optional[Dict[str, Any]]) -> bool:
    """All conditions must hold; conditions without a context never hold."""
    if not conditions:
        return True

    if context is None:
        return False

    return all(evaluate_condition(condition, context) for condition in conditions)


class PolicyResolver:
    """Resolve decisions with fixed precedence over a snapshot.

    Precedence, most specific first: user override, group aggregate over
    active groups (any DENY wins), role baseline. A refinement step then
    downgrades ALLOW to DENY when ``role_required`` on the requested or the
    granting permission excludes the principal's role, or when a supplied
    context fails.
    """

    def __init__(self, snapshot_provider: Callable[[], Optional[PermissionSnapshot]],
                 baseline: Optional[Dict[Role, FrozenSet[PermissionKey]]] = None):
        self.logger = get_logger("permissions.resolver")
        self._snapshot_provider = snapshot_provider
        self.baseline = baseline if baseline is not None else ROLE_BASELINE

    @property
    def snapshot(self) -> Optional[PermissionSnapshot]:
        return self._snapshot_provider()

    def resolve(self, principal: Principal, resource: str, action: str,
                context: Optional[Dict[str, Any]] = None,
                predicate: Optional[ContextPredicate] = None) -> ResolvedDecision:
        """Resolve one (principal, resource, action) with optional context."""
        try:
            result = self._resolve_precedence(principal, resource, action)
            result = self._apply_role_required(principal, resource, action, result)
            if context is not None or predicate is not None:
                result = self.refine_with_context(result, context, predicate)
            return result
        except Exception as e:
            self.logger.error(
                "Resolution error",
                principal_id=principal.principal_id,
                resource=resource,
                action=action,
                error=str(e)
            )
            return ResolvedDecision(
                decision=Decision.DENY,
                source=DecisionSource.ERROR,
                reason="Resolution error"
            )

    def resolve_all(self, principal: Principal) -> Dict[PermissionKey, ResolvedDecision]:
        """Context-free decisions for every known key."""
        return {
            (resource, action): self.resolve(principal, resource, action)
            for resource, action in sorted(self.known_keys())
        }

    def known_keys(self) -> set:
        """Catalog keys, baseline keys and CRUD keys implied by manage."""
        keys = set()
        snapshot = self.snapshot
        if snapshot is not None:
            keys.update(p.key for p in snapshot.permissions.values())
        for role in self.baseline:
            keys.update(baseline_keys(role, self.baseline))
        for resource, action in list(keys):
            if action == MANAGE_ACTION:
                keys.update((resource, implied) for implied in MANAGE_IMPLIES)
        return keys

    def refine_with_context(self, result: ResolvedDecision,
                            context: Optional[Dict[str, Any]],
                            predicate: Optional[ContextPredicate] = None) -> ResolvedDecision:
        """Downgrade an ALLOW whose conditions or ownership predicate fail."""
        if not result.allowed:
            return result

        if result.conditions and not any(
            evaluate_conditions(condition_set, context) for condition_set in result.conditions
        ):
            return ResolvedDecision(
                decision=Decision.DENY,
                source=DecisionSource.CONTEXT,
                reason="Permission conditions not satisfied by context",
                matched_rules=list(result.matched_rules),
            )

        if predicate is not None:
            try:
                satisfied = bool(predicate(context or {}))
            except Exception as e:
                self.logger.warning("Context predicate failed", error=str(e))
                satisfied = False
            if not satisfied:
                return ResolvedDecision(
                    decision=Decision.DENY,
                    source=DecisionSource.CONTEXT,
                    reason="Ownership predicate rejected context",
                    matched_rules=list(result.matched_rules),
                )

        return result

    def _resolve_precedence(self, principal: Principal, resource: str, action: str) -> ResolvedDecision:
        snapshot = self.snapshot
        if snapshot is None:
            return ResolvedDecision(
                decision=Decision.DENY,
                source=DecisionSource.ERROR,
                reason="Permission snapshot not loaded"
            )

        keys = candidate_keys(resource, action)

        # 1. User override
        for key in keys:
            permission = snapshot.permission_by_key(*key)
            if permission is None:
                continue
            row = snapshot.user_permissions.get((principal.principal_id, permission.id))
            if row is not None:
                return ResolvedDecision(
                    decision=Decision(row.effect.value),
                    source=DecisionSource.USER_OVERRIDE,
                    reason=f"User override on '{key[0]}:{key[1]}'",
                    matched_rules=[f"user:{principal.principal_id}:{permission.id}"],
                    conditions=[list(row.conditions)] if row.effect == Effect.ALLOW else [],
                    granted_key=key,
                )

        # 2. Group aggregate over active groups
        active_groups = [
            group_id for group_id in snapshot.groups_of(principal.principal_id)
            if group_id in snapshot.groups and snapshot.groups[group_id].is_active
        ]
        for key in keys:
            permission = snapshot.permission_by_key(*key)
            if permission is None:
                continue
            rows = [
                snapshot.group_permissions[(group_id, permission.id)]
                for group_id in active_groups
                if (group_id, permission.id) in snapshot.group_permissions
            ]
            if not rows:
                continue

            denying = [row for row in rows if row.effect == Effect.DENY]
            if denying:
                return ResolvedDecision(
                    decision=Decision.DENY,
                    source=DecisionSource.GROUP,
                    reason=f"Denied by group rule on '{key[0]}:{key[1]}'",
                    matched_rules=sorted(f"group:{row.group_id}:{row.permission_id}" for row in denying),
                    granted_key=key,
                )
            return ResolvedDecision(
                decision=Decision.ALLOW,
                source=DecisionSource.GROUP,
                reason=f"Allowed by group rule on '{key[0]}:{key[1]}'",
                matched_rules=sorted(f"group:{row.group_id}:{row.permission_id}" for row in rows),
                conditions=[list(row.conditions) for row in rows],
                granted_key=key,
            )

        # 3. Role baseline, default deny
        granted = baseline_grant(principal.role, resource, action, self.baseline)
        if granted is not None:
            return ResolvedDecision(
                decision=Decision.ALLOW,
                source=DecisionSource.ROLE_BASELINE,
                reason=f"Role {principal.role.value} baseline",
                matched_rules=[f"role:{principal.role.value}"],
                granted_key=granted,
            )
        return ResolvedDecision(
            decision=Decision.DENY,
            source=DecisionSource.ROLE_BASELINE,
            reason="No applicable rule"
        )

    def _apply_role_required(self, principal: Principal, resource: str, action: str,
                             result: ResolvedDecision) -> ResolvedDecision:
        """Deny unless the role satisfies the requested and the granting permission."""
        if not result.allowed or self.snapshot is None:
            return result

        keys = {(resource, action)}
        if result.granted_key is not None:
            keys.add(result.granted_key)

        for key in sorted(keys):
            permission = self.snapshot.permission_by_key(*key)
            if permission is None or not permission.role_required:
                continue
            if principal.role in permission.role_required:
                continue
            return ResolvedDecision(
                decision=Decision.DENY,
                source=DecisionSource.ROLE_REQUIRED,
                reason=f"Role {principal.role.value} not in required roles for '{key[0]}:{key[1]}'",
                matched_rules=list(result.matched_rules),
                granted_key=result.granted_key,
            )

        return result
