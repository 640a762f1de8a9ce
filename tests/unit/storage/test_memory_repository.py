"""
Tests unitaires InMemoryAuthRepository

Transactions (rollback complet), contraintes d'unicité, historique
append-only, suppression strictement unique des refresh records.
"""

from datetime import timedelta

import pytest

from taskauth.storage import IAuthRepository, InMemoryAuthRepository, RepositoryError


class TestTransactions:
    def test_implements_interface(self, repository):
        assert isinstance(repository, IAuthRepository)

    @pytest.mark.asyncio
    async def test_commit(self, repository):
        async with repository.transaction():
            assert repository.in_transaction is True
            identity = await repository.create_identity("alice")

        assert repository.in_transaction is False
        assert await repository.get_identity(identity.id) is identity
        assert repository.commit_count == 1

    @pytest.mark.asyncio
    async def test_rollback_undoes_every_write(self, repository):
        """Échec au milieu → aucune écriture ne subsiste."""
        contact_type = await repository.create_contact_type("primary email")
        existing = await repository.create_identity("bob")

        with pytest.raises(RuntimeError):
            async with repository.transaction():
                identity = await repository.create_identity("alice")
                await repository.create_contact(identity.id, contact_type.id, "alice@example.com", is_primary=True)
                await repository.append_credential_history(identity.id, "$2b$04$hash")
                await repository.set_identity_active(existing.id, False)
                raise RuntimeError("boom")

        assert await repository.find_identity_by_username("alice") is None
        assert await repository.find_contact_by_value("alice@example.com") is None
        assert existing.is_active is True
        assert repository.rollback_count == 1

    @pytest.mark.asyncio
    async def test_rollback_restores_deleted_rows(self, repository, clock):
        identity = await repository.create_identity("alice")
        record = await repository.create_refresh_record(identity.id, "h1", clock.now + timedelta(days=1))

        with pytest.raises(ValueError):
            async with repository.transaction():
                assert await repository.delete_refresh_record(record.id) is True
                raise ValueError("abort")

        assert await repository.find_active_refresh_record(identity.id, "h1") is record

    @pytest.mark.asyncio
    async def test_nested_transaction_joins_outer(self, repository):
        with pytest.raises(RuntimeError):
            async with repository.transaction():
                async with repository.transaction():
                    await repository.create_identity("inner")
                raise RuntimeError("outer fails")

        assert await repository.find_identity_by_username("inner") is None
        assert repository.commit_count == 0

    @pytest.mark.asyncio
    async def test_writes_outside_transaction_persist(self, repository):
        identity = await repository.create_identity("alice")
        assert await repository.get_identity(identity.id) is identity

    @pytest.mark.asyncio
    async def test_repositories_isolated(self, repository, clock):
        other = InMemoryAuthRepository(clock=clock)
        async with repository.transaction():
            assert other.in_transaction is False


class TestConstraints:
    @pytest.mark.asyncio
    async def test_username_unique_case_insensitive(self, repository):
        await repository.create_identity("Alice")
        with pytest.raises(RepositoryError):
            await repository.create_identity("alice")

    @pytest.mark.asyncio
    async def test_contact_value_unique(self, repository):
        contact_type = await repository.create_contact_type("email")
        alice = await repository.create_identity("alice")
        bob = await repository.create_identity("bob")
        await repository.create_contact(alice.id, contact_type.id, "shared@example.com")

        with pytest.raises(RepositoryError):
            await repository.create_contact(bob.id, contact_type.id, "shared@example.com")

    @pytest.mark.asyncio
    async def test_contact_type_name_normalized(self, repository):
        contact_type = await repository.create_contact_type("primary email")
        assert await repository.find_contact_type_by_name("Primary_Email") is contact_type
        with pytest.raises(RepositoryError):
            await repository.create_contact_type("PRIMARY EMAIL")

    @pytest.mark.asyncio
    async def test_unknown_foreign_key(self, repository):
        with pytest.raises(RepositoryError):
            await repository.append_credential_history("missing", "$2b$04$hash")


class TestLookups:
    @pytest.mark.asyncio
    async def test_primary_contact_lookup(self, repository):
        primary = await repository.create_contact_type("primary email")
        secondary = await repository.create_contact_type("email")
        alice = await repository.create_identity("alice")
        await repository.create_contact(alice.id, primary.id, "alice@example.com", is_primary=True)
        await repository.create_contact(alice.id, secondary.id, "alice@work.example.com")

        assert await repository.find_identity_by_primary_contact("alice@example.com", primary.id) is alice
        assert await repository.find_identity_by_primary_contact("alice@work.example.com", secondary.id) is None

    @pytest.mark.asyncio
    async def test_credential_history_append_only(self, repository):
        identity = await repository.create_identity("alice")
        await repository.append_credential_history(identity.id, "h1")
        await repository.append_credential_history(identity.id, "h2")

        history = await repository.list_credentials(identity.id)
        assert [r.password_hash for r in history] == ["h1", "h2"]
        assert (await repository.latest_credential(identity.id)).password_hash == "h2"

    @pytest.mark.asyncio
    async def test_latest_credential_none(self, repository):
        identity = await repository.create_identity("alice")
        assert await repository.latest_credential(identity.id) is None


class TestTokenRecords:
    @pytest.mark.asyncio
    async def test_delete_refresh_record_once(self, repository, clock):
        """Deux suppressions concurrentes: une seule réussit."""
        identity = await repository.create_identity("alice")
        record = await repository.create_refresh_record(identity.id, "h1", clock.now + timedelta(days=7))

        assert await repository.delete_refresh_record(record.id) is True
        assert await repository.delete_refresh_record(record.id) is False

    @pytest.mark.asyncio
    async def test_deactivate_all_refresh_records(self, repository, clock):
        identity = await repository.create_identity("alice")
        for token_hash in ("h1", "h2"):
            await repository.create_refresh_record(identity.id, token_hash, clock.now + timedelta(days=7))

        assert await repository.deactivate_all_refresh_records(identity.id) == 2
        assert await repository.find_active_refresh_record(identity.id, "h1") is None
        assert len(await repository.list_refresh_records(identity.id)) == 2

    @pytest.mark.asyncio
    async def test_delete_by_hash(self, repository, clock):
        identity = await repository.create_identity("alice")
        await repository.create_refresh_record(identity.id, "h1", clock.now + timedelta(days=7))

        assert await repository.delete_refresh_records_by_hash(identity.id, "h1") == 1
        assert await repository.delete_refresh_records_by_hash(identity.id, "h1") == 0

    @pytest.mark.asyncio
    async def test_mark_single_use_token_once(self, repository, clock):
        identity = await repository.create_identity("alice")
        record = await repository.create_single_use_token(identity.id, "h", "password_reset", clock.now)

        assert await repository.mark_single_use_token_used(record.id) is True
        assert await repository.mark_single_use_token_used(record.id) is False
        assert record.used_at == clock.now
