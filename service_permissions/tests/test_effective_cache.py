"""
Unit tests for the effective-set cache.
"""

import pytest
from unittest.mock import MagicMock

from shared.metrics import MetricsCollector
from service_permissions.app.cache.effective_cache import EffectiveSetCache
from service_permissions.app.rules.models import (
    Decision, DecisionSource, Principal, ResolvedDecision, Role,
)


class TestEffectiveSetCache:
    """Test cases for EffectiveSetCache."""

    @pytest.fixture
    def compute(self):
        """Mock decision set computation."""
        return MagicMock(side_effect=lambda principal: {
            ("patients", "read"): ResolvedDecision(
                decision=Decision.ALLOW, source=DecisionSource.ROLE_BASELINE
            )
        })

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("permissions-test")

    @pytest.fixture
    def cache(self, compute, clock, metrics):
        """Create EffectiveSetCache with a 300 second window."""
        return EffectiveSetCache(compute, freshness_seconds=300, clock=clock, metrics=metrics)

    @pytest.fixture
    def doctor(self):
        return Principal(principal_id="doctor-1", role=Role.DOCTOR)

    @pytest.fixture
    def admin(self):
        return Principal(principal_id="admin-1", role=Role.ADMIN)

    def test_miss_then_hit(self, cache, compute, doctor):
        """Test first lookup computes, second is served from cache."""
        first = cache.decisions_for(doctor)
        second = cache.decisions_for(doctor)

        assert first is second
        assert compute.call_count == 1
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1
        assert cache.stats()["hit_rate"] == 0.5

    def test_entry_expires_after_window(self, cache, compute, clock, doctor):
        """Test entries older than the window are recomputed."""
        cache.decisions_for(doctor)

        clock.advance(299)
        cache.decisions_for(doctor)
        assert compute.call_count == 1

        clock.advance(1)
        assert cache.get("doctor-1") is None
        cache.decisions_for(doctor)
        assert compute.call_count == 2

    def test_invalidate(self, cache, compute, doctor):
        """Test invalidation drops a fresh entry."""
        cache.decisions_for(doctor)

        assert cache.invalidate("doctor-1") is True
        assert cache.invalidate("doctor-1") is False
        assert "doctor-1" not in cache

        cache.decisions_for(doctor)
        assert compute.call_count == 2

    def test_invalidate_many_only_touches_listed(self, cache, doctor, admin):
        """Test invalidate_many leaves other principals cached."""
        cache.decisions_for(doctor)
        cache.decisions_for(admin)

        removed = cache.invalidate_many(["doctor-1", "unknown"])

        assert removed == 1
        assert "doctor-1" not in cache
        assert "admin-1" in cache
        assert cache.stats()["invalidations"] == 2

    def test_refresh_bypasses_window(self, cache, compute, clock, doctor):
        """Test refresh recomputes a fresh entry immediately."""
        cache.decisions_for(doctor)
        clock.advance(10)

        entry = cache.refresh(doctor)

        assert compute.call_count == 2
        assert entry.computed_at == clock.now
        assert cache.get("doctor-1") is entry

    def test_clear(self, cache, doctor, admin):
        """Test clear drops every entry."""
        cache.decisions_for(doctor)
        cache.decisions_for(admin)

        cache.clear()

        assert len(cache) == 0

    def test_zero_window_never_serves_cached(self, compute, clock, doctor):
        """Test a zero freshness window always recomputes."""
        cache = EffectiveSetCache(compute, freshness_seconds=0, clock=clock)

        cache.decisions_for(doctor)
        cache.decisions_for(doctor)

        assert compute.call_count == 2

    def test_metrics(self, cache, metrics, doctor):
        """Test cache events are exported."""
        cache.decisions_for(doctor)
        cache.decisions_for(doctor)
        cache.invalidate_many(["doctor-1"])

        assert metrics.sample("permission_cache_events_total", event="miss") == 1.0
        assert metrics.sample("permission_cache_events_total", event="hit") == 1.0
        assert metrics.sample("permission_cache_events_total", event="invalidate") == 1.0
        assert metrics.sample("permission_cache_entries") == 0.0
