"""
Effective-set cache for resolved permission decisions.
"""

import time
from typing import Dict, Any, Optional, Callable, Iterable
from dataclasses import dataclass, field

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..rules.models import PermissionKey, Principal, ResolvedDecision


DEFAULT_FRESHNESS_SECONDS = 300.0

DecisionSet = Dict[PermissionKey, ResolvedDecision]


@dataclass
class CacheEntry:
    """Decisions computed for one principal."""
    principal_id: str
    decisions: DecisionSet = field(default_factory=dict)
    computed_at: float = 0.0


class EffectiveSetCache:
    """Per-principal memoization of resolved decisions.

    Entries are served while younger than the freshness window. The only
    mutators are ``invalidate``/``invalidate_many``/``clear`` (drop entries
    regardless of age) and ``refresh`` (recompute immediately).
    """

    def __init__(
        self,
        compute: Callable[[Principal], DecisionSet],
        freshness_seconds: float = DEFAULT_FRESHNESS_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.logger = get_logger("permissions.cache")
        self._compute = compute
        self.freshness_seconds = freshness_seconds
        self._clock = clock
        self.metrics = metrics
        self._entries: Dict[str, CacheEntry] = {}
        self._stats = {"hits": 0, "misses": 0, "invalidations": 0, "refreshes": 0}

    def get(self, principal_id: str) -> Optional[CacheEntry]:
        """Return the entry if present and fresh; drop it if expired."""
        entry = self._entries.get(principal_id)
        if entry is None:
            return None

        if self._clock() - entry.computed_at >= self.freshness_seconds:
            del self._entries[principal_id]
            self.logger.debug("Cache entry expired", principal_id=principal_id)
            return None

        return entry

    def decisions_for(self, principal: Principal) -> DecisionSet:
        """Serve the principal's decision set, recomputing on miss."""
        entry = self.get(principal.principal_id)
        if entry is not None:
            self._record("hits", "hit")
            return entry.decisions

        self._record("misses", "miss")
        return self._store(principal).decisions

    def refresh(self, principal: Principal) -> CacheEntry:
        """Recompute a principal's entry now, bypassing the freshness window."""
        self._record("refreshes", "refresh")
        entry = self._store(principal)
        self.logger.info("Cache entry refreshed", principal_id=principal.principal_id,
                         decisions=len(entry.decisions))
        return entry

    def invalidate(self, principal_id: str) -> bool:
        """Drop a principal's entry regardless of freshness."""
        removed = self._entries.pop(principal_id, None) is not None
        self._record("invalidations", "invalidate")
        self._update_gauge()
        self.logger.debug("Cache entry invalidated", principal_id=principal_id, removed=removed)
        return removed

    def invalidate_many(self, principal_ids: Iterable[str]) -> int:
        """Drop entries for every id; return how many entries existed."""
        ids = sorted(set(principal_ids))
        removed = 0
        for principal_id in ids:
            if self._entries.pop(principal_id, None) is not None:
                removed += 1
        self._stats["invalidations"] += len(ids)
        if self.metrics:
            self.metrics.record_cache_event("invalidate", len(ids))
        self._update_gauge()
        self.logger.info("Cache entries invalidated", principal_ids=ids, removed=removed)
        return removed

    def clear(self) -> None:
        """Drop every entry."""
        count = len(self._entries)
        self._entries.clear()
        self._update_gauge()
        self.logger.info("Cache cleared", removed=count)

    def __contains__(self, principal_id: str) -> bool:
        return self.get(principal_id) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            "entries": len(self._entries),
            "freshness_seconds": self.freshness_seconds,
            "hit_rate": self._stats["hits"] / lookups if lookups else 0.0,
            **self._stats,
        }

    def _store(self, principal: Principal) -> CacheEntry:
        entry = CacheEntry(
            principal_id=principal.principal_id,
            decisions=self._compute(principal),
            computed_at=self._clock(),
        )
        self._entries[principal.principal_id] = entry
        self._update_gauge()
        return entry

    def _record(self, stat: str, event: str) -> None:
        self._stats[stat] += 1
        if self.metrics:
            self.metrics.record_cache_event(event)

    def _update_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_cache_entries(len(self._entries))
