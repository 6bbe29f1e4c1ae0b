"""
Shared fixtures for the permissions service tests.
"""

import pytest
import pytest_asyncio

from shared.config import get_config
from service_permissions.app.main import PermissionEngine
from service_permissions.app.rules.models import (
    Effect, GroupMembership, GroupPermission, Permission, PermissionGroup,
    PermissionSnapshot, Principal, Role, UserPermission,
)
from service_permissions.app.store.memory import InMemoryPermissionStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def principals():
    """Principals known to the store."""
    return {
        "root": Principal(principal_id="root", role=Role.SUPER_ADMIN, tenant_id="clinic-1"),
        "admin-1": Principal(principal_id="admin-1", role=Role.ADMIN, tenant_id="clinic-1"),
        "admin-2": Principal(principal_id="admin-2", role=Role.ADMIN, tenant_id="clinic-1"),
        "doctor-1": Principal(principal_id="doctor-1", role=Role.DOCTOR, tenant_id="clinic-1"),
    }


@pytest.fixture
def seed_snapshot(principals):
    """Catalog, groups and rows seeded into the store."""
    return PermissionSnapshot.from_rows(
        permissions=[
            Permission(id="perm-patients-read", resource="patients", action="read"),
            Permission(id="perm-patients-delete", resource="patients", action="delete"),
            Permission(id="perm-reviews-read", resource="reviews", action="read"),
            Permission(id="perm-reviews-delete", resource="reviews", action="delete"),
            Permission(id="perm-staff-manage", resource="staff", action="manage"),
            Permission(id="perm-blogs-create", resource="blogs", action="create"),
        ],
        groups=[
            PermissionGroup(id="group-super", name="super_admin", tenant_id="clinic-1"),
            PermissionGroup(id="group-senior", name="senior-admin", tenant_id="clinic-1"),
            PermissionGroup(id="group-editors", name="editors", tenant_id="clinic-1"),
        ],
        group_permissions=[
            GroupPermission(group_id="group-editors", permission_id="perm-blogs-create",
                            effect=Effect.ALLOW),
        ],
        user_permissions=[
            UserPermission(principal_id="doctor-1", permission_id="perm-reviews-delete",
                           effect=Effect.ALLOW),
        ],
        memberships=[
            GroupMembership(principal_id="root", group_id="group-super"),
            GroupMembership(principal_id="admin-2", group_id="group-editors"),
        ],
        principals=list(principals.values()),
    )


@pytest.fixture
def store(seed_snapshot):
    """Create an in-memory store holding the seed data."""
    return InMemoryPermissionStore(seed_snapshot)


@pytest.fixture
def config():
    """Engine configuration without retry delays."""
    return get_config(
        freshness_seconds=300.0,
        snapshot_retry_attempts=2,
        snapshot_retry_base_delay=0.0,
        snapshot_retry_max_delay=0.0,
    )


@pytest.fixture
def engine(store, config, clock):
    """Create an engine that has not loaded a snapshot yet."""
    return PermissionEngine(store, config=config, clock=clock)


@pytest_asyncio.fixture
async def loaded_engine(engine):
    """Create an engine with the seed snapshot loaded."""
    await engine.load()
    return engine
