"""
Tests unitaires AuthOrchestrator - inscription, connexion, rotation,
déconnexion, contexte de requête.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from taskauth.audit import AuditEmitter, AuditEventType
from taskauth.auth import TokenType
from taskauth.core import ErrorKind, StateError, TokenError, TokenErrorReason
from taskauth.logging import StructuredLogger
from taskauth.orchestrator import AuthContext, AuthOrchestrator, ContactInput
from taskauth.rbac import PermissionLogic
from taskauth.storage import RepositoryError


EMAIL = "alice@example.com"
PASSWORD = "Str0ng!Pass1"


# ══════════════════════════════════════════════════════════════════════════════
# INSCRIPTION
# ══════════════════════════════════════════════════════════════════════════════


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_success(self, orchestrator, make_register_request, seeded_repository):
        result = await orchestrator.register(make_register_request())

        assert result.success is True
        assert result.message == "User registered successfully"
        assert result.access_token is None
        assert result.user.username == "alice"
        assert result.user.roles == ["User"]
        assert result.user.is_verified is False
        assert [(c.contact, c.contact_type, c.is_primary) for c in result.user.contacts] == [
            ("alice@example.com", "primary email", True)
        ]
        history = await seeded_repository.list_credentials(result.user.id)
        assert len(history) == 1
        assert history[0].password_hash.startswith("$2")

    @pytest.mark.asyncio
    async def test_contact_normalized(self, orchestrator, make_register_request):
        request = make_register_request(contacts=[ContactInput(contact="  Alice@Example.COM ", contact_type="Primary_Email")])
        result = await orchestrator.register(request)

        assert result.user.contacts[0].contact == "alice@example.com"

    @pytest.mark.asyncio
    async def test_weak_password_creates_nothing(self, orchestrator, make_register_request, seeded_repository):
        """Robustesse vérifiée avant toute écriture."""
        result = await orchestrator.register(make_register_request(password="weak"))

        assert result.success is False
        assert result.error_kind == ErrorKind.VALIDATION
        assert result.message == "Password validation failed"
        assert "Password must be at least 8 characters long" in result.errors
        assert await seeded_repository.find_identity_by_username("alice") is None

    @pytest.mark.asyncio
    async def test_duplicate_username(self, orchestrator, alice, make_register_request):
        request = make_register_request(contacts=[ContactInput(contact="other@example.com", contact_type="primary email")])
        result = await orchestrator.register(request)

        assert result.error_kind == ErrorKind.CONFLICT
        assert result.message == "Username already exists"

    @pytest.mark.asyncio
    async def test_duplicate_contact(self, orchestrator, alice, make_register_request):
        result = await orchestrator.register(make_register_request(username="alice2"))

        assert result.error_kind == ErrorKind.CONFLICT
        assert result.message == "Contact already exists"
        assert result.errors == ["Contact 'alice@example.com' is already registered"]

    @pytest.mark.asyncio
    async def test_contact_conflict_rolls_back_identity(self, orchestrator, alice, make_register_request, seeded_repository):
        """Échec sur le second contact → identité et premier contact annulés."""
        request = make_register_request(
            username="bob",
            contacts=[
                ContactInput(contact="bob@example.com", contact_type="primary email"),
                ContactInput(contact="alice@example.com", contact_type="email"),
            ],
        )
        result = await orchestrator.register(request)

        assert result.success is False
        assert await seeded_repository.find_identity_by_username("bob") is None
        assert await seeded_repository.find_contact_by_value("bob@example.com") is None

    @pytest.mark.asyncio
    async def test_contact_required(self, orchestrator, make_register_request):
        result = await orchestrator.register(make_register_request(contacts=[]))
        assert result.message == "At least one contact is required"

    @pytest.mark.asyncio
    async def test_email_contact_required(self, orchestrator, make_register_request):
        request = make_register_request(contacts=[ContactInput(contact="+15551234567", contact_type="primary mobile")])
        result = await orchestrator.register(request)
        assert result.message == "At least one email contact is required"

    @pytest.mark.asyncio
    async def test_single_primary_per_base_type(self, orchestrator, make_register_request):
        request = make_register_request(
            contacts=[
                ContactInput(contact="a@example.com", contact_type="primary email"),
                ContactInput(contact="b@example.com", contact_type="email", is_primary=True),
            ]
        )
        result = await orchestrator.register(request)

        assert result.error_kind == ErrorKind.VALIDATION
        assert result.errors == ["User can only have one primary email contact"]

    @pytest.mark.asyncio
    async def test_unknown_contact_type(self, orchestrator, make_register_request):
        request = make_register_request(
            contacts=[
                ContactInput(contact="alice@example.com", contact_type="primary email"),
                ContactInput(contact="@alice", contact_type="pigeon"),
            ]
        )
        result = await orchestrator.register(request)

        assert result.message == "Invalid contact type: pigeon"

    @pytest.mark.asyncio
    async def test_invalid_contact_format(self, orchestrator, make_register_request):
        request = make_register_request(contacts=[ContactInput(contact="alice-at-example", contact_type="primary email")])
        result = await orchestrator.register(request)

        assert result.message == "Invalid contact format"
        assert result.errors == ["Invalid email format"]

    @pytest.mark.parametrize("username", ["al", "alice smith", "a" * 101])
    @pytest.mark.asyncio
    async def test_invalid_username(self, orchestrator, make_register_request, username):
        result = await orchestrator.register(make_register_request(username=username))
        assert result.message == "Invalid username"

    @pytest.mark.asyncio
    async def test_infrastructure_error_propagates(self, orchestrator, make_register_request, seeded_repository):
        """Erreur dépôt → exception (pas d'AuthResult), rollback complet."""
        failing = AsyncMock(side_effect=RepositoryError("database unavailable"))

        with patch.object(seeded_repository, "append_credential_history", failing):
            with pytest.raises(RepositoryError):
                await orchestrator.register(make_register_request())

        assert await seeded_repository.find_identity_by_username("alice") is None


# ══════════════════════════════════════════════════════════════════════════════
# CONNEXION
# ══════════════════════════════════════════════════════════════════════════════


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_success(self, orchestrator, alice, seeded_repository):
        result = await orchestrator.login(EMAIL, PASSWORD, "primary email")

        assert result.success is True
        assert result.message == "Login successful"
        assert result.access_token and result.refresh_token
        assert "tasks:read" in result.permissions
        assert "tasks:update" not in result.permissions
        assert len(await seeded_repository.list_refresh_records(alice.id)) == 1

    @pytest.mark.asyncio
    async def test_access_token_claims(self, orchestrator, alice_session, alice):
        claims = orchestrator._codec.verify(alice_session.access_token, TokenType.ACCESS)

        assert claims.sub == alice.id
        assert claims.username == "alice"
        assert claims.roles == ["User"]

    @pytest.mark.asyncio
    async def test_contact_type_detected(self, orchestrator, alice):
        result = await orchestrator.login("ALICE@example.com", PASSWORD)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_uniform_failure_messages(self, orchestrator, alice):
        """Mauvais mot de passe et contact inconnu: réponse identique."""
        wrong_password = await orchestrator.login(EMAIL, "Wr0ng!Pass1", "primary email")
        unknown_contact = await orchestrator.login("nobody@example.com", PASSWORD, "primary email")

        for result in (wrong_password, unknown_contact):
            assert result.success is False
            assert result.error_kind == ErrorKind.CREDENTIAL
            assert result.message == "Invalid credentials"
            assert result.errors == ["Contact or password is incorrect"]
            assert result.access_token is None

    @pytest.mark.asyncio
    async def test_non_primary_type_rejected(self, orchestrator, alice):
        result = await orchestrator.login("alice_tg", PASSWORD, "telegram")

        assert result.message == "Invalid login method"
        assert result.errors == ["You must use your primary email or primary mobile number to login"]

    @pytest.mark.asyncio
    async def test_undetectable_contact(self, orchestrator):
        result = await orchestrator.login("not a contact", PASSWORD)
        assert result.message == "Unable to detect contact type"

    @pytest.mark.asyncio
    async def test_inactive_account(self, orchestrator, alice, seeded_repository):
        await seeded_repository.set_identity_active(alice.id, False)

        result = await orchestrator.login(EMAIL, PASSWORD, "primary email")

        assert result.error_kind == ErrorKind.STATE
        assert result.message == "Account is inactive"

    @pytest.mark.asyncio
    async def test_inactive_account_wrong_password_is_credential_error(self, orchestrator, alice, seeded_repository):
        """L'état du compte n'est pas révélé sans le bon mot de passe."""
        await seeded_repository.set_identity_active(alice.id, False)

        result = await orchestrator.login(EMAIL, "Wr0ng!Pass1", "primary email")

        assert result.error_kind == ErrorKind.CREDENTIAL

    @pytest.mark.asyncio
    async def test_identity_without_credential(self, orchestrator, seeded_repository):
        identity = await seeded_repository.create_identity("nopass")
        contact_type = await seeded_repository.find_contact_type_by_name("primary email")
        await seeded_repository.create_contact(identity.id, contact_type.id, "nopass@example.com", is_primary=True)

        result = await orchestrator.login("nopass@example.com", PASSWORD)

        assert result.error_kind == ErrorKind.CREDENTIAL

    @pytest.mark.asyncio
    async def test_login_refreshes_permission_cache(self, orchestrator, alice):
        """Connexion = permissions fraîches même si une entrée existait."""
        await orchestrator.cache.get(alice.id)
        misses = orchestrator.cache.stats()["misses"]

        await orchestrator.login(EMAIL, PASSWORD)

        assert orchestrator.cache.stats()["misses"] == misses + 1

    @pytest.mark.asyncio
    async def test_login_audited(self, settings, seeded_repository, clock, silent_logger, alice):
        audit = AuditEmitter(logger=silent_logger, clock=clock)
        orchestrator = AuthOrchestrator.from_settings(
            settings, seeded_repository, audit=audit, clock=clock, logger=silent_logger
        )

        await orchestrator.login(EMAIL, PASSWORD)
        await orchestrator.login(EMAIL, "Wr0ng!Pass1")

        assert [e.user_id for e in audit.get_events(event_type=AuditEventType.AUTH_SUCCESS)] == [alice.id]
        failure = audit.get_events(event_type=AuditEventType.AUTH_FAILURE)[0]
        assert failure.user_id is None
        assert failure.metadata["error_kind"] == "credential"

    @pytest.mark.asyncio
    async def test_tokens_never_logged(self, settings, seeded_repository, clock, alice):
        lines = []
        logger = StructuredLogger("taskauth", output_handler=lines.append, clock=clock)
        orchestrator = AuthOrchestrator.from_settings(settings, seeded_repository, clock=clock, logger=logger)

        session = await orchestrator.login(EMAIL, PASSWORD)
        await orchestrator.refresh(session.refresh_token)
        await orchestrator.refresh(session.refresh_token)

        output = "\n".join(lines)
        assert session.access_token not in output
        assert session.refresh_token not in output
        assert PASSWORD not in output


# ══════════════════════════════════════════════════════════════════════════════
# ROTATION
# ══════════════════════════════════════════════════════════════════════════════


class TestRefresh:
    @pytest.mark.asyncio
    async def test_rotation(self, orchestrator, alice_session, alice, seeded_repository):
        result = await orchestrator.refresh(alice_session.refresh_token)

        assert result.success is True
        assert result.message == "Tokens refreshed successfully"
        assert result.refresh_token != alice_session.refresh_token
        records = await seeded_repository.list_refresh_records(alice.id)
        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_reused_refresh_token_rejected(self, orchestrator, alice_session):
        """Un refresh token déjà échangé est inutilisable."""
        rotated = await orchestrator.refresh(alice_session.refresh_token)
        replay = await orchestrator.refresh(alice_session.refresh_token)

        assert replay.success is False
        assert replay.error_kind == ErrorKind.TOKEN
        assert replay.message == "Invalid or expired token"
        assert (await orchestrator.refresh(rotated.refresh_token)).success is True

    @pytest.mark.asyncio
    async def test_concurrent_rotation_single_winner(self, orchestrator, alice_session):
        results = await asyncio.gather(
            orchestrator.refresh(alice_session.refresh_token),
            orchestrator.refresh(alice_session.refresh_token),
        )

        assert sorted(r.success for r in results) == [False, True]

    @pytest.mark.asyncio
    async def test_access_token_not_accepted(self, orchestrator, alice_session):
        result = await orchestrator.refresh(alice_session.access_token)
        assert result.error_kind == ErrorKind.TOKEN

    @pytest.mark.asyncio
    async def test_expired_refresh_token(self, orchestrator, alice_session, clock):
        clock.advance(7 * 24 * 3600)
        result = await orchestrator.refresh(alice_session.refresh_token)
        assert result.error_kind == ErrorKind.TOKEN

    @pytest.mark.asyncio
    async def test_inactive_identity(self, orchestrator, alice_session, alice, seeded_repository):
        await seeded_repository.set_identity_active(alice.id, False)

        result = await orchestrator.refresh(alice_session.refresh_token)

        assert result.error_kind == ErrorKind.STATE
        assert result.message == "User not found or inactive"

    @pytest.mark.asyncio
    async def test_failed_rotation_keeps_record(self, orchestrator, alice_session, alice, seeded_repository):
        """Échec après suppression → suppression annulée."""
        failing = AsyncMock(side_effect=RepositoryError("database unavailable"))

        with patch.object(seeded_repository, "create_refresh_record", failing):
            with pytest.raises(RepositoryError):
                await orchestrator.refresh(alice_session.refresh_token)

        assert (await orchestrator.refresh(alice_session.refresh_token)).success is True

    @pytest.mark.asyncio
    async def test_record_already_deleted(self, orchestrator, alice_session, seeded_repository):
        """Suppression perdue face à un refresh concurrent → USED."""
        lost_race = AsyncMock(return_value=False)

        with patch.object(seeded_repository, "delete_refresh_record", lost_race):
            result = await orchestrator.refresh(alice_session.refresh_token)

        assert result.error_kind == ErrorKind.TOKEN
        assert orchestrator.flows["refresh"].step_names[4] == "consume_refresh_record"

    @pytest.mark.asyncio
    async def test_rotation_refreshes_permission_cache(self, orchestrator, alice_session, alice, seeded_repository):
        """Permission accordée hors RoleAdmin: visible après rotation."""
        assert await orchestrator.check_permission(alice.id, "tasks:delete") is False

        role = await seeded_repository.find_role_by_name("User")
        permission = await seeded_repository.find_permission("tasks", "delete")
        await seeded_repository.grant_role_permission(role.id, permission.id)

        result = await orchestrator.refresh(alice_session.refresh_token)

        assert result.success is True
        assert await orchestrator.check_permission(alice.id, "tasks:delete") is True


# ══════════════════════════════════════════════════════════════════════════════
# DÉCONNEXION
# ══════════════════════════════════════════════════════════════════════════════


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_revokes_refresh_token(self, orchestrator, alice_session):
        claims = orchestrator._codec.verify(alice_session.access_token, TokenType.ACCESS)

        result = await orchestrator.logout(claims, alice_session.refresh_token)

        assert result.success is True
        assert result.message == "Logout successful"
        assert (await orchestrator.refresh(alice_session.refresh_token)).success is False

    @pytest.mark.asyncio
    async def test_logout_idempotent(self, orchestrator, alice_session):
        claims = orchestrator._codec.verify(alice_session.access_token, TokenType.ACCESS)

        first = await orchestrator.logout(claims, alice_session.refresh_token)
        second = await orchestrator.logout(claims, alice_session.refresh_token)

        assert first.success is True
        assert second.success is True

    @pytest.mark.asyncio
    async def test_logout_without_access_token(self, orchestrator, alice_session, clock):
        """Token d'accès expiré: identité tirée du refresh token."""
        clock.advance(3600)

        result = await orchestrator.logout(None, alice_session.refresh_token)

        assert result.success is True
        assert (await orchestrator.refresh(alice_session.refresh_token)).success is False

    @pytest.mark.parametrize("refresh_token", [None, "", "garbage"])
    @pytest.mark.asyncio
    async def test_logout_always_succeeds(self, orchestrator, refresh_token):
        result = await orchestrator.logout(None, refresh_token)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_logout_infrastructure_failure_logged(self, settings, seeded_repository, clock, alice_session):
        lines = []
        logger = StructuredLogger("taskauth", output_handler=lines.append, clock=clock)
        orchestrator = AuthOrchestrator.from_settings(settings, seeded_repository, clock=clock, logger=logger)
        failing = AsyncMock(side_effect=RepositoryError("database unavailable"))

        with patch.object(seeded_repository, "delete_refresh_records_by_hash", failing):
            result = await orchestrator.logout(None, alice_session.refresh_token)

        assert result.success is True
        assert any("logout_failed" in line and "RepositoryError" in line for line in lines)


# ══════════════════════════════════════════════════════════════════════════════
# CONTEXTE / PERMISSIONS
# ══════════════════════════════════════════════════════════════════════════════


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_context(self, orchestrator, alice_session, alice):
        context = await orchestrator.authenticate(alice_session.access_token)

        assert isinstance(context, AuthContext)
        assert context.identity_id == alice.id
        assert context.roles == ("User",)
        assert context.can("tasks:read") is True
        assert context.can(["tasks:read", "tasks:delete"]) is False
        assert context.can(["tasks:read", "tasks:delete"], PermissionLogic.OR) is True

    @pytest.mark.asyncio
    async def test_refresh_token_rejected(self, orchestrator, alice_session):
        with pytest.raises(TokenError) as exc_info:
            await orchestrator.authenticate(alice_session.refresh_token)
        assert exc_info.value.reason == TokenErrorReason.WRONG_TYPE

    @pytest.mark.asyncio
    async def test_inactive_identity(self, orchestrator, alice_session, alice, seeded_repository):
        await seeded_repository.set_identity_active(alice.id, False)

        with pytest.raises(StateError):
            await orchestrator.authenticate(alice_session.access_token)


class TestCheckPermission:
    @pytest.mark.asyncio
    async def test_default_role_permissions(self, orchestrator, alice):
        assert await orchestrator.check_permission(alice.id, "tasks:read") is True
        assert await orchestrator.check_permission(alice.id, "tasks:delete") is False

    @pytest.mark.asyncio
    async def test_logic(self, orchestrator, alice):
        required = ["tasks:read", "tasks:delete"]
        assert await orchestrator.check_permission(alice.id, required) is False
        assert await orchestrator.check_permission(alice.id, required, PermissionLogic.OR) is True

    @pytest.mark.asyncio
    async def test_empty_identity_denied(self, orchestrator):
        assert await orchestrator.check_permission("", "tasks:read") is False

    @pytest.mark.asyncio
    async def test_get_current_user(self, orchestrator, alice):
        result = await orchestrator.get_current_user(alice.id)

        assert result.user.username == "alice"
        assert "users:read" in result.permissions

    @pytest.mark.asyncio
    async def test_get_unknown_user(self, orchestrator):
        result = await orchestrator.get_current_user("missing")
        assert result.error_kind == ErrorKind.NOT_FOUND
