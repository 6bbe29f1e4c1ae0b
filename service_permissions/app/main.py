"""
Permission engine for the clinic staff portal.

One ``PermissionEngine`` is created per application session. It holds the
snapshot read model fetched from the permission store, the policy resolver,
the effective-set cache and the administrative services, and answers
decision queries for the session's current principal.
"""

import time
from typing import Dict, Any, Optional, Callable, Iterable, List, Tuple

from prometheus_client import CollectorRegistry

from shared.config import ServiceConfig, get_config
from shared.errors import StoreUnavailable
from shared.logging import clear_context, configure_logging, get_logger, set_principal_context
from shared.metrics import get_metrics_collector
from shared.retry import RetryConfig, RetryError, retry_store_call

from .cache.effective_cache import EffectiveSetCache
from .query.gates import PermissionGate
from .query.navigation import NavNode, filter_navigation_tree
from .rules.engine import ContextPredicate, PolicyResolver
from .rules.models import PermissionSnapshot, Principal
from .services.assignment import AssignmentService
from .services.catalog import PermissionCatalog
from .services.stats import permission_stats
from .store.base import PermissionStore


class PermissionEngine:
    """Per-session composition of store, resolver, cache and services.

    Queries never touch the store. They read the local snapshot, so the
    freshness bound on decisions holds only while the host calls ``sync()``
    at least once per ``freshness_seconds``. An expired cache entry is
    rebuilt from the same snapshot, and ``is_stale`` reports when a sync
    is overdue.
    """

    def __init__(self, store: PermissionStore, config: Optional[ServiceConfig] = None,
                 clock: Optional[Callable[[], float]] = None,
                 registry: Optional[CollectorRegistry] = None):
        self.config = config or get_config()
        configure_logging(self.config.service_name, self.config.log_level)
        self.logger = get_logger("permissions.engine")
        self.store = store
        self.metrics = get_metrics_collector(self.config.service_name, registry)
        self._clock = clock or time.monotonic

        self._snapshot: Optional[PermissionSnapshot] = None
        self._loaded_at: Optional[float] = None
        self.current_principal: Optional[Principal] = None

        # Initialize components
        self.resolver = PolicyResolver(lambda: self._snapshot)
        self.cache = EffectiveSetCache(
            self.resolver.resolve_all,
            freshness_seconds=self.config.freshness_seconds,
            clock=self._clock,
            metrics=self.metrics,
        )
        self.catalog = PermissionCatalog(self)
        self.assignments = AssignmentService(self)

        self._retry_config = RetryConfig.from_service_config(self.config)

    @property
    def snapshot(self) -> Optional[PermissionSnapshot]:
        return self._snapshot

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def is_stale(self) -> bool:
        """True when no snapshot is loaded or it is older than the freshness window."""
        if self._snapshot is None:
            return True
        return self._clock() - self._loaded_at >= self.config.freshness_seconds

    # Snapshot lifecycle

    async def load(self) -> PermissionSnapshot:
        """Fetch a fresh snapshot, replace the read model and clear the cache."""
        fetch = retry_store_call("load_snapshot", self._retry_config)(self._fetch_snapshot)
        try:
            snapshot = await fetch()
        except RetryError as e:
            self.metrics.record_snapshot_load("error")
            self.metrics.record_error("store_unavailable")
            self.logger.error("Failed to load permission snapshot", error=str(e))
            message = str(e.last_exception) or "Permission store unavailable"
            raise StoreUnavailable("load_snapshot", message) from e

        self._snapshot = snapshot
        self._loaded_at = self._clock()
        self.cache.clear()

        self.metrics.record_snapshot_load("success")
        self.logger.info("Permission snapshot loaded", **snapshot.summary())
        return snapshot

    async def sync(self) -> bool:
        """Reload when the snapshot is older than the freshness window.

        Returns True if a new snapshot was installed. A failed reload is
        logged and queries keep serving the previous snapshot.
        """
        if not self.is_stale:
            return False

        try:
            await self.load()
        except StoreUnavailable as e:
            self.logger.warning("Snapshot sync failed, serving previous snapshot",
                                error=e.message, loaded=self.is_loaded)
            return False
        return True

    async def ensure_loaded(self) -> PermissionSnapshot:
        if self._snapshot is None:
            return await self.load()
        return self._snapshot

    async def _fetch_snapshot(self) -> PermissionSnapshot:
        return await self.store.fetch_snapshot()

    # Session principal

    def set_current_principal(self, principal: Optional[Principal]) -> None:
        """Set the principal that the session-level queries act for."""
        self.current_principal = principal
        clear_context()
        if principal is not None:
            set_principal_context(principal.principal_id, principal.tenant_id)
        self.logger.info("Current principal set",
                         principal_id=principal.principal_id if principal else None)

    def gate_for(self, principal: Principal) -> PermissionGate:
        return PermissionGate(self, principal)

    # Queries for the current principal

    def can(self, resource: str, action: str) -> bool:
        gate = self._current_gate()
        return gate.can(resource, action) if gate is not None else False

    def can_with_context(self, resource: str, action: str, context: Optional[Dict[str, Any]],
                         predicate: Optional[ContextPredicate] = None) -> bool:
        gate = self._current_gate()
        return gate.can_with_context(resource, action, context, predicate) if gate is not None else False

    def can_any(self, pairs: Iterable[Tuple[str, str]]) -> bool:
        gate = self._current_gate()
        return gate.can_any(pairs) if gate is not None else False

    def can_all(self, pairs: Iterable[Tuple[str, str]]) -> bool:
        gate = self._current_gate()
        return gate.can_all(pairs) if gate is not None else False

    def filter_navigation_tree(self, tree: List[NavNode],
                               principal: Optional[Principal] = None) -> List[NavNode]:
        """Filter a menu for the given principal, or the current one."""
        principal = principal or self.current_principal
        if principal is None:
            return []
        gate = self.gate_for(principal)
        return filter_navigation_tree(tree, principal, gate.can)

    def stats(self) -> Dict[str, Any]:
        """Permission usage statistics plus cache statistics."""
        snapshot = self._snapshot if self._snapshot is not None else PermissionSnapshot()
        result = permission_stats(snapshot, top=self.config.stats_top_n)
        result["cache"] = self.cache.stats()
        result["loaded"] = self.is_loaded
        result["stale"] = self.is_stale
        return result

    def _current_gate(self) -> Optional[PermissionGate]:
        if self.current_principal is None or self._snapshot is None:
            return None
        return PermissionGate(self, self.current_principal)
