"""
Permission gates answering decision queries for one principal.
"""

from typing import Dict, Any, Optional, Iterable, Tuple, TYPE_CHECKING

from shared.logging import get_logger
from ..rules.engine import ContextPredicate
from ..rules.models import Decision, DecisionSource, Principal, ResolvedDecision

if TYPE_CHECKING:
    from ..main import PermissionEngine


class PermissionGate:
    """Synchronous decision queries for a principal.

    Context-free decisions are served from the engine's effective-set cache.
    A supplied context only refines the cached decision and may downgrade it
    to DENY. Any internal error yields DENY.
    """

    def __init__(self, engine: "PermissionEngine", principal: Principal):
        self.engine = engine
        self.principal = principal
        self.logger = get_logger("permissions.gate")

    def decision(self, resource: str, action: str,
                 context: Optional[Dict[str, Any]] = None,
                 predicate: Optional[ContextPredicate] = None,
                 refine: bool = False) -> ResolvedDecision:
        """Resolve a decision with its source and reason.

        Context refinement runs when a context or predicate is given, or when
        ``refine`` is set; conditional grants fail without a context.
        """
        try:
            result = self._decide(resource, action, context, predicate,
                                  refine or context is not None or predicate is not None)
        except Exception as e:
            self.logger.error(
                "Permission check failed",
                principal_id=self.principal.principal_id,
                resource=resource,
                action=action,
                error=str(e)
            )
            self.engine.metrics.record_error("permission_check")
            result = ResolvedDecision(
                decision=Decision.DENY,
                source=DecisionSource.ERROR,
                reason="Permission check failed"
            )

        self.engine.metrics.record_decision(result.decision.value, result.source.value)
        return result

    def can(self, resource: str, action: str) -> bool:
        return self.decision(resource, action).allowed

    def can_with_context(self, resource: str, action: str, context: Optional[Dict[str, Any]],
                         predicate: Optional[ContextPredicate] = None) -> bool:
        """Like ``can`` but conditions and the predicate must hold for ``context``."""
        return self.decision(resource, action, context, predicate, refine=True).allowed

    def can_any(self, pairs: Iterable[Tuple[str, str]]) -> bool:
        return any(self.can(resource, action) for resource, action in pairs)

    def can_all(self, pairs: Iterable[Tuple[str, str]]) -> bool:
        return all(self.can(resource, action) for resource, action in pairs)

    def _decide(self, resource: str, action: str,
                context: Optional[Dict[str, Any]],
                predicate: Optional[ContextPredicate], refine: bool) -> ResolvedDecision:
        if self.engine.snapshot is None:
            return ResolvedDecision(
                decision=Decision.DENY,
                source=DecisionSource.ERROR,
                reason="Permission snapshot not loaded"
            )

        decisions = self.engine.cache.decisions_for(self.principal)
        result = decisions.get((resource, action))
        if result is None:
            result = self.engine.resolver.resolve(self.principal, resource, action)

        if not refine:
            return result

        return self.engine.resolver.refine_with_context(result, context, predicate)
