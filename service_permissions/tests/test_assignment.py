"""
Unit tests for the assignment service.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from shared.errors import (
    DuplicateGroup, NotFound, ProtectedGroupViolation, StoreUnavailable, ValidationError,
)
from service_permissions.app.rules.models import (
    ConditionOperator, DecisionSource, Effect, PermissionCondition, Principal, Role,
)


class TestAssignmentService:
    """Test cases for AssignmentService."""

    @pytest.fixture
    def warm(self, principals):
        """Populate the cache for every seeded principal."""
        def _warm(engine):
            for principal in principals.values():
                engine.gate_for(principal).can("patients", "read")
        return _warm

    @pytest.mark.asyncio
    async def test_assign_group_permission_invalidates_members(self, loaded_engine, warm, principals):
        """Test a group row invalidates exactly the group's members."""
        warm(loaded_engine)

        row = await loaded_engine.assignments.assign_group_permission(
            "group-editors", "perm-patients-delete", Effect.ALLOW
        )

        assert row.effect == Effect.ALLOW
        assert "admin-2" not in loaded_engine.cache
        assert {"root", "admin-1", "doctor-1"} <= {
            pid for pid in principals if pid in loaded_engine.cache
        }
        assert loaded_engine.gate_for(principals["admin-2"]).can("patients", "delete") is True

    @pytest.mark.asyncio
    async def test_assign_group_permission_unknown_refs(self, loaded_engine):
        """Test unknown group or permission raises NotFound."""
        with pytest.raises(NotFound):
            await loaded_engine.assignments.assign_group_permission(
                "missing", "perm-patients-delete", Effect.ALLOW
            )

        with pytest.raises(NotFound):
            await loaded_engine.assignments.assign_group_permission(
                "group-editors", "missing", Effect.ALLOW
            )

    @pytest.mark.asyncio
    async def test_assign_group_permission_is_idempotent(self, loaded_engine, principals):
        """Test repeating an assignment leaves decisions unchanged."""
        for _ in range(2):
            await loaded_engine.assignments.assign_group_permission(
                "group-editors", "perm-patients-delete", Effect.DENY
            )

        keys = [k for k in loaded_engine.snapshot.group_permissions if k[0] == "group-editors"]
        assert len(keys) == 2
        assert loaded_engine.gate_for(principals["admin-2"]).can("patients", "delete") is False

    @pytest.mark.asyncio
    async def test_revoke_group_permission(self, loaded_engine, warm, principals):
        """Test revoking a group row invalidates members."""
        gate = loaded_engine.gate_for(principals["admin-2"])
        warm(loaded_engine)
        assert gate.can("blogs", "create") is True

        await loaded_engine.assignments.revoke_group_permission("group-editors", "perm-blogs-create")

        assert "admin-2" not in loaded_engine.cache
        assert "doctor-1" in loaded_engine.cache
        # admin baseline still manages blogs
        assert gate.can("blogs", "create") is True
        assert gate.decision("blogs", "create").source == DecisionSource.ROLE_BASELINE

    @pytest.mark.asyncio
    async def test_revoke_missing_row(self, loaded_engine):
        """Test revoking a row that does not exist raises NotFound."""
        with pytest.raises(NotFound):
            await loaded_engine.assignments.revoke_group_permission(
                "group-editors", "perm-patients-delete"
            )

        with pytest.raises(NotFound):
            await loaded_engine.assignments.revoke_user_permission("admin-1", "perm-patients-delete")

    @pytest.mark.asyncio
    async def test_user_permission_invalidates_only_principal(self, loaded_engine, warm, principals):
        """Test a user override invalidates exactly one principal."""
        warm(loaded_engine)

        await loaded_engine.assignments.assign_user_permission(
            "admin-1", "perm-patients-read", Effect.DENY
        )

        assert "admin-1" not in loaded_engine.cache
        assert all(pid in loaded_engine.cache for pid in ("root", "admin-2", "doctor-1"))
        assert loaded_engine.gate_for(principals["admin-1"]).can("patients", "read") is False

        await loaded_engine.assignments.revoke_user_permission("admin-1", "perm-patients-read")

        assert loaded_engine.gate_for(principals["admin-1"]).can("patients", "read") is True

    @pytest.mark.asyncio
    async def test_user_permission_unknown_principal(self, loaded_engine):
        """Test overrides require a known principal."""
        with pytest.raises(NotFound):
            await loaded_engine.assignments.assign_user_permission(
                "ghost", "perm-patients-read", Effect.ALLOW
            )

    @pytest.mark.asyncio
    async def test_conditional_user_permission(self, loaded_engine, principals):
        """Test conditions stored on an override apply to context checks."""
        await loaded_engine.assignments.assign_user_permission(
            "doctor-1", "perm-reviews-read", Effect.ALLOW,
            conditions=[PermissionCondition(field="doctor_id", operator=ConditionOperator.EQUALS,
                                            value="doctor-1")]
        )
        gate = loaded_engine.gate_for(principals["doctor-1"])

        assert gate.can("reviews", "read") is True
        assert gate.can_with_context("reviews", "read", {"doctor_id": "doctor-1"}) is True
        assert gate.can_with_context("reviews", "read", {"doctor_id": "doctor-9"}) is False
        assert gate.can_with_context("reviews", "read", None) is False

    @pytest.mark.asyncio
    async def test_add_membership(self, loaded_engine, warm, principals):
        """Test joining a group invalidates only the joining principal."""
        warm(loaded_engine)

        await loaded_engine.assignments.add_membership("admin-1", "group-editors")

        assert ("admin-1", "group-editors") in loaded_engine.snapshot.memberships
        assert "admin-1" not in loaded_engine.cache
        assert "admin-2" in loaded_engine.cache

    @pytest.mark.asyncio
    async def test_add_existing_membership_is_noop(self, loaded_engine, store, warm):
        """Test re-adding a membership succeeds without a store call."""
        warm(loaded_engine)
        store.add_membership = AsyncMock()

        membership = await loaded_engine.assignments.add_membership("admin-2", "group-editors")

        assert membership.group_id == "group-editors"
        store.add_membership.assert_not_called()
        assert "admin-2" in loaded_engine.cache

    @pytest.mark.asyncio
    async def test_remove_membership(self, loaded_engine, principals):
        """Test leaving a group removes its grants."""
        gate = loaded_engine.gate_for(principals["admin-2"])
        await loaded_engine.assignments.assign_group_permission(
            "group-editors", "perm-patients-delete", Effect.ALLOW
        )
        assert gate.can("patients", "delete") is True

        await loaded_engine.assignments.remove_membership("admin-2", "group-editors")

        assert gate.can("patients", "delete") is False

        with pytest.raises(NotFound):
            await loaded_engine.assignments.remove_membership("admin-2", "group-editors")

    @pytest.mark.asyncio
    async def test_create_group(self, loaded_engine):
        """Test group creation and per-tenant uniqueness."""
        group = await loaded_engine.assignments.create_group("nurses", "clinic-1", "Nursing staff")

        assert loaded_engine.snapshot.groups[group.id].name == "nurses"

        with pytest.raises(DuplicateGroup):
            await loaded_engine.assignments.create_group("nurses", "clinic-1")

        other = await loaded_engine.assignments.create_group("nurses", "clinic-2")
        assert other.id != group.id

    @pytest.mark.asyncio
    async def test_create_group_requires_name(self, loaded_engine):
        """Test empty group names are rejected."""
        with pytest.raises(ValidationError):
            await loaded_engine.assignments.create_group("", "clinic-1")

    @pytest.mark.asyncio
    async def test_deactivate_group_invalidates_members(self, loaded_engine, warm, principals):
        """Test deactivation removes the group from aggregation."""
        gate = loaded_engine.gate_for(principals["admin-2"])
        await loaded_engine.assignments.assign_group_permission(
            "group-editors", "perm-patients-delete", Effect.ALLOW
        )
        warm(loaded_engine)
        assert gate.can("patients", "delete") is True

        group = await loaded_engine.assignments.deactivate_group("group-editors")

        assert group.is_active is False
        assert "admin-2" not in loaded_engine.cache
        assert "admin-1" in loaded_engine.cache
        assert gate.can("patients", "delete") is False

        await loaded_engine.assignments.activate_group("group-editors")

        assert gate.can("patients", "delete") is True

    @pytest.mark.asyncio
    async def test_rename_group_keeps_cache(self, loaded_engine, warm):
        """Test a rename does not invalidate members."""
        warm(loaded_engine)

        group = await loaded_engine.assignments.update_group("group-editors", {"name": "writers"})

        assert group.name == "writers"
        assert "admin-2" in loaded_engine.cache

    @pytest.mark.asyncio
    async def test_update_group_duplicate_name(self, loaded_engine):
        """Test renaming onto an existing group name is rejected."""
        with pytest.raises(DuplicateGroup):
            await loaded_engine.assignments.update_group("group-editors", {"name": "senior-admin"})

    @pytest.mark.asyncio
    async def test_update_group_unknown_field(self, loaded_engine):
        """Test unsupported patch fields are rejected."""
        with pytest.raises(ValidationError):
            await loaded_engine.assignments.update_group("group-editors", {"members": []})

    @pytest.mark.asyncio
    async def test_protected_group_cannot_be_deactivated(self, loaded_engine, store):
        """Test the protected group stays active."""
        store.update_group = AsyncMock()

        with pytest.raises(ProtectedGroupViolation) as exc_info:
            await loaded_engine.assignments.deactivate_group("group-super")

        assert exc_info.value.code == "PROTECTED_GROUP_VIOLATION"
        assert loaded_engine.snapshot.groups["group-super"].is_active is True
        store.update_group.assert_not_called()

    @pytest.mark.asyncio
    async def test_protected_group_cannot_be_renamed_or_deleted(self, loaded_engine):
        """Test rename and delete of the protected group are refused."""
        with pytest.raises(ProtectedGroupViolation):
            await loaded_engine.assignments.update_group("group-super", {"name": "admins"})

        with pytest.raises(ProtectedGroupViolation):
            await loaded_engine.assignments.delete_group("group-super")

        assert "group-super" in loaded_engine.snapshot.groups

    @pytest.mark.asyncio
    async def test_protected_group_description_can_change(self, loaded_engine):
        """Test non-structural edits of the protected group are allowed."""
        group = await loaded_engine.assignments.update_group(
            "group-super", {"description": "System administrators"}
        )

        assert group.description == "System administrators"
        assert group.is_active is True

    @pytest.mark.asyncio
    async def test_protected_group_falsy_patch_refused(self, loaded_engine, store):
        """Test a falsy non-bool is_active is treated as deactivation."""
        with pytest.raises(ProtectedGroupViolation):
            await loaded_engine.assignments.update_group("group-super", {"is_active": 0})

        assert loaded_engine.snapshot.groups["group-super"].is_active is True
        assert (await store.fetch_snapshot()).groups["group-super"].is_active is True

    @pytest.mark.asyncio
    async def test_update_group_values_validated(self, loaded_engine, store):
        """Test patch values are validated and stored with their field types."""
        with pytest.raises(ValidationError):
            await loaded_engine.assignments.update_group("group-editors", {"is_active": "sometimes"})

        with pytest.raises(ValidationError):
            await loaded_engine.assignments.update_group("group-editors", {"name": ""})

        group = await loaded_engine.assignments.update_group("group-editors", {"is_active": 0})

        assert group.is_active is False
        assert (await store.fetch_snapshot()).groups["group-editors"].is_active is False

    @pytest.mark.asyncio
    async def test_unknown_effect_rejected(self, loaded_engine, store):
        """Test an unknown effect is a validation error and never reaches the store."""
        store.assign_group_permission = AsyncMock()
        store.assign_user_permission = AsyncMock()

        with pytest.raises(ValidationError) as exc_info:
            await loaded_engine.assignments.assign_group_permission(
                "group-editors", "perm-blogs-create", "MAYBE"
            )
        assert exc_info.value.details == {"effect": "MAYBE"}

        with pytest.raises(ValidationError):
            await loaded_engine.assignments.assign_user_permission(
                "doctor-1", "perm-blogs-create", "maybe"
            )

        store.assign_group_permission.assert_not_called()
        store.assign_user_permission.assert_not_called()
        assert loaded_engine.metrics.sample(
            "permission_mutations_total", operation="assign_group_permission", status="rejected"
        ) == 1.0

    @pytest.mark.asyncio
    async def test_delete_group(self, loaded_engine, warm, principals):
        """Test deleting a group removes rows and memberships and invalidates members."""
        warm(loaded_engine)

        await loaded_engine.assignments.delete_group("group-editors")

        snapshot = loaded_engine.snapshot
        assert "group-editors" not in snapshot.groups
        assert snapshot.groups_of("admin-2") == []
        assert ("group-editors", "perm-blogs-create") not in snapshot.group_permissions
        assert "admin-2" not in loaded_engine.cache
        assert "root" in loaded_engine.cache

    @pytest.mark.asyncio
    async def test_store_failure_leaves_state_untouched(self, loaded_engine, store, warm):
        """Test a failed store call changes neither snapshot nor cache."""
        warm(loaded_engine)
        store.add_membership = AsyncMock(side_effect=TimeoutError("store timed out"))

        with pytest.raises(StoreUnavailable) as exc_info:
            await loaded_engine.assignments.add_membership("admin-1", "group-editors")

        assert exc_info.value.details["operation"] == "add_membership"
        assert ("admin-1", "group-editors") not in loaded_engine.snapshot.memberships
        assert "admin-1" in loaded_engine.cache

    @pytest.mark.asyncio
    async def test_cancelled_mutation_leaves_state_untouched(self, loaded_engine, store, warm):
        """Test cancellation before the store returns changes nothing."""
        warm(loaded_engine)
        store.add_membership = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await loaded_engine.assignments.add_membership("admin-1", "group-editors")

        assert ("admin-1", "group-editors") not in loaded_engine.snapshot.memberships
        assert "admin-1" in loaded_engine.cache

    @pytest.mark.asyncio
    async def test_store_domain_error_propagates(self, loaded_engine, store):
        """Test domain errors from the store are not wrapped."""
        store.create_group = AsyncMock(side_effect=DuplicateGroup("nurses", "clinic-1"))

        with pytest.raises(DuplicateGroup):
            await loaded_engine.assignments.create_group("nurses", "clinic-1")

        assert loaded_engine.metrics.sample(
            "permission_mutations_total", operation="create_group", status="rejected"
        ) == 1.0

    @pytest.mark.asyncio
    async def test_refresh_principal_cache(self, loaded_engine, store, principals):
        """Test refresh re-fetches the snapshot and recomputes immediately."""
        fetches = store.fetch_count
        await store.add_membership("admin-1", "group-editors")

        entry = await loaded_engine.assignments.refresh_principal_cache("admin-1")

        assert store.fetch_count == fetches + 1
        assert ("admin-1", "group-editors") in loaded_engine.snapshot.memberships
        assert loaded_engine.cache.get("admin-1") is entry
        assert entry.decisions[("blogs", "create")].source == DecisionSource.GROUP

    @pytest.mark.asyncio
    async def test_refresh_unknown_principal(self, loaded_engine):
        """Test refreshing an unknown principal raises NotFound."""
        with pytest.raises(NotFound):
            await loaded_engine.assignments.refresh_principal_cache("ghost")

    @pytest.mark.asyncio
    async def test_refresh_current_principal_outside_store(self, loaded_engine):
        """Test the session principal can be refreshed even if the store lacks it."""
        visitor = Principal(principal_id="locum-1", role=Role.DOCTOR)
        loaded_engine.set_current_principal(visitor)

        entry = await loaded_engine.assignments.refresh_principal_cache("locum-1")

        assert entry.principal_id == "locum-1"
