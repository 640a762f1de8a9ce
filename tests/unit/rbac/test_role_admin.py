"""
Tests unitaires RoleAdmin

Chaque mutation de rôle / permission invalide le cache de toutes les
identités affectées.
"""

import pytest

from taskauth.audit import AuditEmitter, AuditEventType
from taskauth.core import ConflictError, NotFoundError, StateError, ValidationError
from taskauth.rbac import PermissionAggregator, PermissionCache, RoleAdmin


@pytest.fixture
def cache(repository, clock, silent_logger):
    return PermissionCache(PermissionAggregator(repository, logger=silent_logger), clock=clock, logger=silent_logger)


@pytest.fixture
def audit(clock, silent_logger):
    return AuditEmitter(logger=silent_logger, clock=clock)


@pytest.fixture
def admin(repository, cache, audit, silent_logger):
    return RoleAdmin(repository, cache, audit=audit, logger=silent_logger)


@pytest.fixture
async def editors(repository, admin):
    """Rôle "Editor" (tasks:read) attribué à alice et bob."""
    role = await admin.create_role("Editor")
    await admin.grant_permission(role.id, "tasks:read")
    alice = await repository.create_identity("alice")
    bob = await repository.create_identity("bob")
    await admin.assign_role(alice.id, role.id)
    await admin.assign_role(bob.id, role.id)
    return role, alice, bob


class TestRoles:
    @pytest.mark.asyncio
    async def test_create_role_conflict(self, admin):
        await admin.create_role("Editor")
        with pytest.raises(ConflictError):
            await admin.create_role("editor")

    @pytest.mark.asyncio
    async def test_create_role_requires_name(self, admin):
        with pytest.raises(ValidationError):
            await admin.create_role("  ")

    @pytest.mark.asyncio
    async def test_deactivate_role_invalidates_holders(self, admin, cache, editors):
        role, alice, bob = editors
        assert "tasks:read" in (await cache.get(alice.id)).permissions
        await cache.get(bob.id)

        await admin.set_role_active(role.id, False)

        assert cache.peek(alice.id) is None
        assert cache.peek(bob.id) is None
        assert (await cache.get(alice.id)).permissions == ()

    @pytest.mark.asyncio
    async def test_delete_assigned_role_refused(self, admin, editors):
        role, _, _ = editors
        with pytest.raises(StateError) as exc_info:
            await admin.delete_role(role.id)
        assert exc_info.value.message == "Cannot delete role with assigned users"

    @pytest.mark.asyncio
    async def test_forced_delete_clears_cache(self, admin, cache, repository, editors):
        role, alice, _ = editors
        await cache.get(alice.id)

        await admin.delete_role(role.id, force=True)

        assert cache.stats()["entries"] == 0
        assert await repository.find_identities_with_role(role.id) == []
        assert (await repository.get_role(role.id)).is_deleted is True

    @pytest.mark.asyncio
    async def test_delete_unknown_role(self, admin):
        with pytest.raises(NotFoundError):
            await admin.delete_role("missing")


class TestAssignments:
    @pytest.mark.asyncio
    async def test_assign_invalidates_identity(self, admin, cache, repository):
        identity = await repository.create_identity("carol")
        role = await admin.create_role("Reviewer")
        await admin.grant_permission(role.id, "projects:read")
        assert (await cache.get(identity.id)).permissions == ()

        await admin.assign_role(identity.id, role.id)

        assert (await cache.get(identity.id)).permissions == ("projects:read",)

    @pytest.mark.asyncio
    async def test_revoke_invalidates_identity(self, admin, cache, editors):
        role, alice, bob = editors
        await cache.get(alice.id)
        await cache.get(bob.id)

        assert await admin.revoke_role(alice.id, role.id) is True

        assert (await cache.get(alice.id)).permissions == ()
        assert cache.peek(bob.id) is not None

    @pytest.mark.asyncio
    async def test_assign_unknown_identity(self, admin):
        role = await admin.create_role("Reviewer")
        with pytest.raises(NotFoundError):
            await admin.assign_role("missing", role.id)


class TestPermissions:
    @pytest.mark.asyncio
    async def test_grant_invalidates_every_holder(self, admin, cache, editors):
        role, alice, bob = editors
        await cache.get(alice.id)
        await cache.get(bob.id)

        holders = await admin.grant_permission(role.id, "tasks:update")

        assert set(holders) == {alice.id, bob.id}
        assert "tasks:update" in (await cache.get(alice.id)).permissions
        assert "tasks:update" in (await cache.get(bob.id)).permissions

    @pytest.mark.asyncio
    async def test_revoke_invalidates_every_holder(self, admin, cache, editors):
        role, alice, _ = editors
        await cache.get(alice.id)

        await admin.revoke_permission(role.id, "tasks:read")

        assert (await cache.get(alice.id)).permissions == ()

    @pytest.mark.asyncio
    async def test_invalid_permission(self, admin, editors):
        role, _, _ = editors
        with pytest.raises(ValidationError):
            await admin.grant_permission(role.id, "tasks:fly")

    @pytest.mark.asyncio
    async def test_mutations_audited(self, admin, audit, editors):
        role, _, _ = editors
        await admin.grant_permission(role.id, "tasks:update", performed_by="admin-1")

        events = audit.get_events(event_type=AuditEventType.PERMISSION_CHANGE)
        assert events[-1].action == "permission_granted"
        assert events[-1].metadata["permission"] == "tasks:update"
        assert events[-1].user_id == "admin-1"
