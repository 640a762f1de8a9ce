"""
TASKAUTH - Auth Orchestrator

Coordination des opérations d'authentification: inscription, connexion,
déconnexion, rotation des refresh tokens, mots de passe (oubli, reset,
changement, configuration initiale), vérification de contact et
contrôle de permissions.

Règles:
    - Chaque opération mutante = un AuthFlow (étapes nommées, une
      transaction, un point de rollback)
    - Les erreurs métier (AuthError) deviennent un AuthResult; les
      erreurs d'infrastructure se propagent après rollback
    - Messages d'échec uniformes: pas d'énumération de comptes
    - Le cache de permissions est invalidé après commit
"""

import re
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from ..audit import AuditEmitter, AuditEmitterError, AuditEventType
from ..auth.contacts import (
    EMAIL,
    UNKNOWN,
    base_type,
    detect_contact_type,
    format_contact,
    is_primary_type,
    normalize_type_name,
    primary_type_for,
    validate_contact_format,
)
from ..auth.credential_store import CredentialStore
from ..auth.interfaces import (
    ICredentialStore,
    ISingleUseTokenLedger,
    ITokenCodec,
    TokenClaims,
    TokenPurpose,
    TokenType,
)
from ..auth.token_codec import TokenCodec
from ..auth.token_ledger import SingleUseTokenLedger
from ..core.crypto_provider import CryptoProvider
from ..core.errors import (
    AuthError,
    ConflictError,
    CredentialError,
    NotFoundError,
    StateError,
    TokenError,
    TokenErrorReason,
    ValidationError,
)
from ..core.interfaces import AuthSettings, Clock, utc_now
from ..logging import LogConfig, LogLevel, StructuredLogger
from ..notifications.interfaces import IEmailSender
from ..rbac.interfaces import IPermissionAggregator, IPermissionCache, PermissionLogic
from ..rbac.permission_aggregator import PermissionAggregator
from ..rbac.permission_cache import PermissionCache
from ..rbac.permission_checker import PermissionChecker
from ..storage.interfaces import ContactType, IAuthRepository, Identity
from .flow import AuthFlow, FlowState, Step
from .interfaces import (
    AuthContext,
    AuthResult,
    ContactInput,
    ContactSnapshot,
    CreateUserRequest,
    IAuthOrchestrator,
    IdentitySnapshot,
    RegisterRequest,
)


USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.]{3,100}$")

FORGOT_PASSWORD_MESSAGE = "If the contact exists, a password reset link will be sent"


class AuthOrchestrator(IAuthOrchestrator):
    """
    Orchestrateur d'authentification.

    Example:
        orchestrator = AuthOrchestrator.from_settings(settings, repository)
        result = await orchestrator.login("alice@example.com", "Str0ng!Pass1")
        if result.success:
            set_cookies(result.access_token, result.refresh_token)
    """

    def __init__(
        self,
        repository: IAuthRepository,
        credential_store: ICredentialStore,
        token_codec: ITokenCodec,
        ledger: ISingleUseTokenLedger,
        aggregator: IPermissionAggregator,
        cache: IPermissionCache,
        settings: Optional[AuthSettings] = None,
        email_sender: Optional[IEmailSender] = None,
        audit: Optional[AuditEmitter] = None,
        checker: Optional[PermissionChecker] = None,
        clock: Clock = utc_now,
        logger: Optional[StructuredLogger] = None,
    ):
        self._repository = repository
        self._credentials = credential_store
        self._codec = token_codec
        self._ledger = ledger
        self._aggregator = aggregator
        self._cache = cache
        self._default_role_name = settings.default_role_name if settings else "User"
        self._email_sender = email_sender
        self._audit = audit
        self._checker = checker or PermissionChecker()
        self._clock = clock
        self._logger = logger or StructuredLogger("taskauth.orchestrator", clock=clock)

        self.flows: Dict[str, AuthFlow] = self._build_flows()

    @classmethod
    def from_settings(
        cls,
        settings: AuthSettings,
        repository: IAuthRepository,
        email_sender: Optional[IEmailSender] = None,
        audit: Optional[AuditEmitter] = None,
        clock: Clock = utc_now,
        logger: Optional[StructuredLogger] = None,
    ) -> "AuthOrchestrator":
        """
        Assemble tous les composants depuis la configuration.

        Raises:
            TokenCodecKeyError: Secret JWE trop court (refus de démarrer)
        """
        logger = logger or StructuredLogger(
            "taskauth", config=LogConfig(min_level=LogLevel.from_name(settings.log_level)), clock=clock
        )
        crypto = CryptoProvider()
        aggregator = PermissionAggregator(repository, logger=logger.child("rbac.aggregator"))
        return cls(
            repository=repository,
            credential_store=CredentialStore(settings.bcrypt_rounds, settings.password_policy),
            token_codec=TokenCodec.from_settings(
                settings, clock=clock, crypto_provider=crypto, logger=logger.child("auth.token_codec")
            ),
            ledger=SingleUseTokenLedger(
                repository,
                crypto_provider=crypto,
                clock=clock,
                reset_ttl_seconds=settings.reset_token_ttl_seconds,
                verification_ttl_seconds=settings.verification_token_ttl_seconds,
                logger=logger.child("auth.token_ledger"),
            ),
            aggregator=aggregator,
            cache=PermissionCache(
                aggregator,
                ttl_seconds=settings.permission_cache_ttl_seconds,
                clock=clock,
                logger=logger.child("rbac.cache"),
            ),
            settings=settings,
            email_sender=email_sender,
            audit=audit,
            clock=clock,
            logger=logger.child("orchestrator"),
        )

    @property
    def cache(self) -> IPermissionCache:
        return self._cache

    def _build_flows(self) -> Dict[str, AuthFlow]:
        s = Step
        definitions = {
            "register": [
                s("validate_password", self._step_validate_new_password),
                s("validate_contacts", self._step_validate_contacts),
                s("check_username", self._step_check_username),
                s("hash_password", self._step_hash_password),
                s("create_identity", self._step_create_identity),
                s("create_contacts", self._step_create_contacts),
                s("append_credential", self._step_append_credential),
                s("assign_role", self._step_assign_role),
            ],
            "login": [
                s("resolve_contact", self._step_resolve_login_contact),
                s("locate_identity", self._step_locate_identity),
                s("verify_password", self._step_verify_login_password),
                s("check_active", self._step_check_account_active),
                s("resolve_roles", self._step_resolve_roles),
                s("issue_tokens", self._step_issue_tokens),
                s("persist_refresh", self._step_persist_refresh),
            ],
            "refresh": [
                s("verify_refresh_token", self._step_verify_refresh_token),
                s("load_refresh_record", self._step_load_refresh_record),
                s("check_active", self._step_require_active_identity),
                s("resolve_roles", self._step_resolve_roles),
                s("consume_refresh_record", self._step_consume_refresh_record),
                s("issue_tokens", self._step_issue_tokens),
                s("persist_refresh", self._step_persist_refresh),
            ],
            "forgot_password": [
                s("issue_reset_token", self._step_issue_reset_token),
            ],
            "reset_password": [
                s("consume_reset_token", self._step_consume_reset_token),
                s("check_active", self._step_require_active_identity),
                s("validate_password", self._step_validate_new_password),
                s("hash_password", self._step_hash_password),
                s("append_credential", self._step_append_credential),
                s("revoke_refresh_tokens", self._step_revoke_refresh_tokens),
            ],
            "change_password": [
                s("check_active", self._step_require_active_identity),
                s("verify_current_password", self._step_verify_current_password),
                s("reject_reuse", self._step_reject_reuse),
                s("validate_password", self._step_validate_new_password),
                s("hash_password", self._step_hash_password),
                s("append_credential", self._step_append_credential),
                s("revoke_refresh_tokens", self._step_revoke_refresh_tokens),
            ],
            "setup_password": [
                s("consume_verification_token", self._step_consume_verification_token),
                s("load_identity", self._step_require_identity),
                s("validate_password", self._step_validate_new_password),
                s("hash_password", self._step_hash_password),
                s("append_credential", self._step_append_credential),
                s("mark_verified", self._step_mark_verified),
                s("revoke_refresh_tokens", self._step_revoke_refresh_tokens),
            ],
            "admin_create_user": [
                s("validate_password", self._step_validate_optional_password),
                s("validate_contacts", self._step_validate_contacts),
                s("resolve_username", self._step_resolve_username),
                s("resolve_role", self._step_resolve_requested_role),
                s("hash_password", self._step_hash_password),
                s("create_identity", self._step_create_identity),
                s("create_contacts", self._step_create_contacts),
                s("append_credential", self._step_append_credential),
                s("assign_role", self._step_assign_role),
                s("issue_setup_token", self._step_issue_setup_token),
            ],
            "admin_set_password": [
                s("load_identity", self._step_require_identity),
                s("validate_password", self._step_validate_new_password),
                s("hash_password", self._step_hash_password),
                s("append_credential", self._step_append_credential),
                s("revoke_refresh_tokens", self._step_revoke_refresh_tokens),
            ],
        }
        return {
            name: AuthFlow(name, steps, self._repository, logger=self._logger.child("flow"))
            for name, steps in definitions.items()
        }

    # ══════════════════════════════════════════════════════════════════════════
    # OPÉRATIONS
    # ══════════════════════════════════════════════════════════════════════════

    async def register(self, request: RegisterRequest) -> AuthResult:
        async def run() -> AuthResult:
            state = await self.flows["register"].execute(
                FlowState(
                    username=request.username.strip(),
                    password=request.password,
                    first_name=request.first_name,
                    last_name=request.last_name,
                    contacts=list(request.contacts),
                    require_email_contact=True,
                    role_name=self._default_role_name,
                )
            )
            identity: Identity = state["identity"]
            self._logger.info("user_registered", identity_id=identity.id)
            await self._emit(AuditEventType.USER_CREATED, identity.id, "register")
            return AuthResult.ok("User registered successfully", user=await self._snapshot(identity))

        return await self._guard("register", run)

    async def login(self, contact: str, password: str, contact_type: Optional[str] = None) -> AuthResult:
        async def run() -> AuthResult:
            try:
                state = await self.flows["login"].execute(
                    FlowState(contact=contact, contact_type=contact_type, password=password)
                )
            except AuthError as exc:
                await self._emit(
                    AuditEventType.AUTH_FAILURE,
                    None,
                    "login",
                    {"error_kind": exc.kind.value, "requested_type": contact_type},
                )
                raise

            identity: Identity = state["identity"]

            # Permissions fraîches dans la réponse
            self._cache.invalidate(identity.id)
            cached = await self._cache.get(identity.id)

            self._logger.info("login_success", identity_id=identity.id)
            await self._emit(AuditEventType.AUTH_SUCCESS, identity.id, "login")
            return AuthResult.ok(
                "Login successful",
                user=await self._snapshot(identity),
                access_token=state["access_token"],
                refresh_token=state["refresh_token"],
                permissions=list(cached.permissions),
            )

        return await self._guard("login", run)

    async def logout(self, access_claims: Optional[TokenClaims], refresh_token: Optional[str]) -> AuthResult:
        """
        Déconnexion.

        L'identité vient du token d'accès, sinon du refresh token vérifié
        (un token d'accès expiré n'empêche pas la déconnexion). Tout échec
        interne est journalisé et la réponse reste un succès.
        """
        identity_id = access_claims.sub if access_claims else None

        try:
            if refresh_token and identity_id is None:
                try:
                    identity_id = self._codec.verify(refresh_token, TokenType.REFRESH).sub
                except TokenError:
                    identity_id = None

            if refresh_token and identity_id:
                async with self._repository.transaction():
                    removed = await self._repository.delete_refresh_records_by_hash(
                        identity_id, self._codec.hash_opaque_token(refresh_token)
                    )
                self._logger.info("logout", identity_id=identity_id, removed_records=removed)
                await self._emit(AuditEventType.LOGOUT, identity_id, "logout")
        except Exception as exc:
            self._logger.error("logout_failed", identity_id=identity_id, error=type(exc).__name__)

        return AuthResult.ok("Logout successful")

    async def refresh(self, refresh_token: str) -> AuthResult:
        async def run() -> AuthResult:
            state = await self.flows["refresh"].execute(FlowState(refresh_token=refresh_token))
            identity: Identity = state["identity"]
            self._cache.invalidate(identity.id)
            await self._emit(AuditEventType.TOKEN_REFRESH, identity.id, "refresh")
            return AuthResult.ok(
                "Tokens refreshed successfully",
                access_token=state["access_token"],
                refresh_token=state["refresh_token"],
            )

        return await self._guard("refresh", run)

    async def forgot_password(self, contact: str, contact_type: Optional[str] = None) -> AuthResult:
        generic = AuthResult.ok(FORGOT_PASSWORD_MESSAGE)

        try:
            type_record, base, formatted = await self._resolve_login_contact(contact, contact_type)
        except ValidationError:
            return generic

        # Pas de canal SMS: seul l'email déclenche un token
        if base != EMAIL:
            return generic

        identity = await self._repository.find_identity_by_primary_contact(formatted, type_record.id)
        if identity is None or not identity.is_active:
            return generic

        state = await self.flows["forgot_password"].execute(FlowState(identity=identity))

        await self._emit(AuditEventType.PASSWORD_RESET_REQUEST, identity.id, "forgot_password")

        if self._email_sender is not None:
            try:
                await self._email_sender.send_password_reset(
                    formatted, state["reset_token"], identity.id, self._display_name(identity)
                )
            except Exception as exc:
                self._logger.error("reset_email_failed", identity_id=identity.id, error=type(exc).__name__)

        return generic

    async def reset_password(self, token: str, new_password: str, identity_id: str) -> AuthResult:
        async def run() -> AuthResult:
            await self.flows["reset_password"].execute(
                FlowState(token=token, password=new_password, identity_id=identity_id)
            )
            self._cache.invalidate(identity_id)
            await self._emit(AuditEventType.PASSWORD_RESET, identity_id, "reset_password")
            return AuthResult.ok("Password reset successfully")

        return await self._guard("reset_password", run)

    async def change_password(self, identity_id: str, old_password: str, new_password: str) -> AuthResult:
        async def run() -> AuthResult:
            await self.flows["change_password"].execute(
                FlowState(identity_id=identity_id, old_password=old_password, password=new_password)
            )
            self._cache.invalidate(identity_id)
            await self._emit(AuditEventType.PASSWORD_CHANGE, identity_id, "change_password")
            return AuthResult.ok("Password changed successfully")

        return await self._guard("change_password", run)

    async def setup_password(self, token: str, identity_id: str, new_password: str) -> AuthResult:
        async def run() -> AuthResult:
            await self.flows["setup_password"].execute(
                FlowState(token=token, identity_id=identity_id, password=new_password)
            )
            self._cache.invalidate(identity_id)
            await self._emit(AuditEventType.PASSWORD_SETUP, identity_id, "setup_password")
            return AuthResult.ok("Password set up successfully")

        return await self._guard("setup_password", run)

    async def verify_contact(self, identity_id: str, contact_id: str, code: str) -> AuthResult:
        """
        Vérification de contact.

        Le code n'est pas contrôlé: aucun schéma OTP n'est défini. Seuls
        l'existence du contact et son rattachement à l'identité le sont.
        """
        async def run() -> AuthResult:
            contact = await self._repository.get_contact(contact_id)
            if contact is None or contact.is_deleted or contact.identity_id != identity_id:
                raise NotFoundError("Contact not found", ["Contact does not exist or does not belong to user"])
            return AuthResult.ok("Contact verified successfully")

        return await self._guard("verify_contact", run)

    async def check_permission(
        self,
        identity_id: str,
        required: Union[str, Sequence[str]],
        logic: PermissionLogic = PermissionLogic.AND,
    ) -> bool:
        if not identity_id:
            return False

        wanted = [required] if isinstance(required, str) else list(required)
        cached = await self._cache.get(identity_id)

        if logic == PermissionLogic.OR:
            return self._checker.has_any(cached.permissions, wanted)
        return self._checker.has_all(cached.permissions, wanted)

    # ── Opérations complémentaires ───────────────────────────────────────────

    async def authenticate(self, access_token: str) -> AuthContext:
        """
        Contexte d'une requête portant un token d'accès.

        Raises:
            TokenError: Token invalide, expiré ou de mauvais type
            StateError: Identité inconnue ou inactive
        """
        claims = self._codec.verify(access_token, TokenType.ACCESS)

        identity = await self._repository.get_identity(claims.sub)
        if identity is None or not identity.is_active:
            raise StateError("User not found or inactive", ["User account is not available"])

        cached = await self._cache.get(identity.id)
        return AuthContext(
            identity_id=identity.id,
            username=identity.username,
            roles=tuple(cached.role_names),
            permissions=cached.permissions,
            claims=claims,
        )

    async def get_current_user(self, identity_id: str) -> AuthResult:
        async def run() -> AuthResult:
            identity = await self._repository.get_identity(identity_id)
            if identity is None:
                raise NotFoundError("User not found", ["User account is not available"])
            cached = await self._cache.get(identity.id)
            return AuthResult.ok(
                "User retrieved successfully",
                user=await self._snapshot(identity),
                permissions=list(cached.permissions),
            )

        return await self._guard("get_current_user", run)

    async def admin_create_user(self, request: CreateUserRequest, created_by: Optional[str] = None) -> AuthResult:
        """
        Création par un administrateur: un seul rôle, mot de passe initial
        optionnel. Sans mot de passe, un token de configuration (24h) est
        émis et envoyé au premier contact email; un échec d'envoi n'annule
        pas la création.
        """
        async def run() -> AuthResult:
            state = await self.flows["admin_create_user"].execute(
                FlowState(
                    username=(request.username or "").strip() or None,
                    password=request.password or None,
                    first_name=request.first_name,
                    last_name=request.last_name,
                    contacts=list(request.contacts),
                    role_ids=list(request.role_ids),
                    role_name=self._default_role_name,
                    created_by=created_by,
                )
            )
            identity: Identity = state["identity"]

            setup_token = state.get("setup_token")
            setup_email = state.get("setup_email")
            if setup_token and setup_email and self._email_sender is not None:
                try:
                    await self._email_sender.send_setup_password(
                        setup_email, setup_token, identity.id, self._display_name(identity)
                    )
                except Exception as exc:
                    self._logger.error("setup_email_failed", identity_id=identity.id, error=type(exc).__name__)

            self._cache.invalidate(identity.id)
            await self._emit(
                AuditEventType.USER_CREATED,
                created_by,
                "admin_create_user",
                {"created_identity": identity.id, "role_id": state["role"].id if state.get("role") else None},
            )
            return AuthResult.ok("User created successfully", user=await self._snapshot(identity))

        return await self._guard("admin_create_user", run)

    async def admin_set_password(
        self, identity_id: str, new_password: str, performed_by: Optional[str] = None
    ) -> AuthResult:
        async def run() -> AuthResult:
            await self.flows["admin_set_password"].execute(
                FlowState(identity_id=identity_id, password=new_password, created_by=performed_by)
            )
            self._cache.invalidate(identity_id)
            await self._emit(
                AuditEventType.PASSWORD_CHANGE, performed_by, "admin_set_password", {"target_identity": identity_id}
            )
            return AuthResult.ok("Password updated successfully")

        return await self._guard("admin_set_password", run)

    # ══════════════════════════════════════════════════════════════════════════
    # ÉTAPES
    # ══════════════════════════════════════════════════════════════════════════

    # ── Mots de passe ────────────────────────────────────────────────────────

    async def _step_validate_new_password(self, state: FlowState) -> None:
        strength = self._credentials.validate_strength(state["password"])
        if not strength.valid:
            raise ValidationError("Password validation failed", strength.errors)

    async def _step_validate_optional_password(self, state: FlowState) -> None:
        if state.get("password"):
            await self._step_validate_new_password(state)

    async def _step_hash_password(self, state: FlowState) -> None:
        password = state.get("password")
        state["password_hash"] = await self._credentials.hash(password) if password else None

    async def _step_append_credential(self, state: FlowState) -> None:
        if state.get("password_hash") is None:
            return
        await self._repository.append_credential_history(
            state["identity"].id, state["password_hash"], created_by=state.get("created_by")
        )

    async def _step_verify_login_password(self, state: FlowState) -> None:
        latest = await self._repository.latest_credential(state["identity"].id)
        if latest is None or not await self._credentials.verify(state["password"], latest.password_hash):
            raise CredentialError()

    async def _step_verify_current_password(self, state: FlowState) -> None:
        latest = await self._repository.latest_credential(state["identity"].id)
        if latest is None:
            raise StateError("Password not found", ["Account setup incomplete"])
        if not await self._credentials.verify(state["old_password"], latest.password_hash):
            raise CredentialError("Invalid old password", ["Current password is incorrect"])
        state["current_hash"] = latest.password_hash

    async def _step_reject_reuse(self, state: FlowState) -> None:
        # Comparaison via verify(): les hash sont salés
        if await self._credentials.verify(state["password"], state["current_hash"]):
            raise ValidationError(
                "New password must be different from current password",
                ["Please choose a different password"],
            )

    async def _step_revoke_refresh_tokens(self, state: FlowState) -> None:
        state["revoked_sessions"] = await self._repository.deactivate_all_refresh_records(state["identity"].id)

    # ── Identités ────────────────────────────────────────────────────────────

    async def _step_require_identity(self, state: FlowState) -> None:
        identity = await self._repository.get_identity(state["identity_id"])
        if identity is None:
            raise NotFoundError("User not found", ["User account is not available"])
        state["identity"] = identity

    async def _step_require_active_identity(self, state: FlowState) -> None:
        identity = state.get("identity") or await self._repository.get_identity(state["identity_id"])
        if identity is None or not identity.is_active:
            raise StateError("User not found or inactive", ["User account is not available"])
        state["identity"] = identity

    async def _step_check_account_active(self, state: FlowState) -> None:
        # Après vérification du mot de passe: l'état du compte n'est
        # révélé qu'à son titulaire
        if not state["identity"].is_active:
            raise StateError("Account is inactive", ["Your account has been deactivated"])

    async def _step_check_username(self, state: FlowState) -> None:
        username = state["username"]
        if not USERNAME_PATTERN.match(username or ""):
            raise ValidationError(
                "Invalid username",
                ["Username must be 3-100 characters: letters, numbers, dots and underscores"],
            )
        if await self._repository.find_identity_by_username(username):
            raise ConflictError("Username already exists", [f"Username '{username}' is already taken"])

    async def _step_resolve_username(self, state: FlowState) -> None:
        if state.get("username"):
            await self._step_check_username(state)
            return

        parts = [p for p in (state.get("first_name"), state.get("last_name")) if p]
        base = re.sub(r"[^a-z0-9_.]", "", ".".join(parts).lower()) or "user"
        if len(base) < 3:
            base = f"{base}.user"

        candidate, suffix = base, 0
        while await self._repository.find_identity_by_username(candidate):
            suffix += 1
            candidate = f"{base}{suffix}"
        state["username"] = candidate

    async def _step_create_identity(self, state: FlowState) -> None:
        state["identity"] = await self._repository.create_identity(
            state["username"],
            first_name=state.get("first_name"),
            last_name=state.get("last_name"),
            created_by=state.get("created_by"),
        )

    async def _step_mark_verified(self, state: FlowState) -> None:
        await self._repository.set_identity_verified(state["identity"].id, True)

    # ── Contacts ─────────────────────────────────────────────────────────────

    async def _step_validate_contacts(self, state: FlowState) -> None:
        contacts: List[ContactInput] = state["contacts"]
        if not contacts:
            raise ValidationError("At least one contact is required")
        if state.get("require_email_contact") and not any(base_type(c.contact_type) == EMAIL for c in contacts):
            raise ValidationError("At least one email contact is required")

    async def _step_create_contacts(self, state: FlowState) -> None:
        """Une erreur sur un contact annule toute l'opération (rollback)."""
        identity: Identity = state["identity"]
        primary_bases: Set[str] = set()

        for contact_input in state["contacts"]:
            contact_type = await self._repository.find_contact_type_by_name(contact_input.contact_type)
            if contact_type is None:
                raise ValidationError(
                    f"Invalid contact type: {contact_input.contact_type}",
                    [f"Contact type '{contact_input.contact_type}' does not exist"],
                )

            formatted = format_contact(contact_input.contact, contact_type.name)
            valid, error = validate_contact_format(formatted, contact_type.name)
            if not valid:
                raise ValidationError("Invalid contact format", [error or "Invalid contact format"])

            if await self._repository.find_contact_by_value(formatted):
                raise ConflictError("Contact already exists", [f"Contact '{formatted}' is already registered"])

            is_primary = contact_input.is_primary
            if is_primary is None:
                is_primary = is_primary_type(contact_type.name)

            if is_primary:
                base = base_type(contact_type.name)
                if base in primary_bases:
                    raise ValidationError(
                        "Multiple primary contacts",
                        [f"User can only have one primary {base} contact"],
                    )
                primary_bases.add(base)

            await self._repository.create_contact(identity.id, contact_type.id, formatted, is_primary=is_primary)

            if base_type(contact_type.name) == EMAIL and not state.get("setup_email"):
                state["setup_email"] = formatted

    async def _step_resolve_login_contact(self, state: FlowState) -> None:
        type_record, _, formatted = await self._resolve_login_contact(state["contact"], state.get("contact_type"))
        state["contact_type_record"] = type_record
        state["formatted_contact"] = formatted

    async def _step_locate_identity(self, state: FlowState) -> None:
        identity = await self._repository.find_identity_by_primary_contact(
            state["formatted_contact"], state["contact_type_record"].id
        )
        if identity is None:
            raise CredentialError()
        state["identity"] = identity

    # ── Rôles ────────────────────────────────────────────────────────────────

    async def _step_resolve_requested_role(self, state: FlowState) -> None:
        role_ids: List[str] = state.get("role_ids") or []
        if role_ids:
            # Règle métier: un seul rôle à la création
            role = await self._repository.get_role(role_ids[0])
            if role is None or role.is_deleted:
                raise NotFoundError("Role not found", [f"Role '{role_ids[0]}' does not exist"])
            state["role"] = role

    async def _step_assign_role(self, state: FlowState) -> None:
        role = state.get("role")
        if role is None:
            role = await self._repository.find_role_by_name(state["role_name"])
            state["role"] = role
        if role is not None:
            await self._repository.assign_user_role(state["identity"].id, role.id, state.get("created_by"))

    async def _step_resolve_roles(self, state: FlowState) -> None:
        state["roles"] = await self._aggregator.resolve_roles(state["identity"].id)

    # ── Tokens de session ────────────────────────────────────────────────────

    async def _step_issue_tokens(self, state: FlowState) -> None:
        identity: Identity = state["identity"]
        state["access_token"] = self._codec.issue_access(
            identity.id, identity.username, [role.name for role in state["roles"]]
        )
        state["refresh_token"] = self._codec.issue_refresh(identity.id)

    async def _step_persist_refresh(self, state: FlowState) -> None:
        await self._repository.create_refresh_record(
            state["identity"].id,
            self._codec.hash_opaque_token(state["refresh_token"]),
            self._codec.refresh_expiry(),
        )

    async def _step_verify_refresh_token(self, state: FlowState) -> None:
        claims = self._codec.verify(state["refresh_token"], TokenType.REFRESH)
        state["claims"] = claims
        state["identity_id"] = claims.sub

    async def _step_load_refresh_record(self, state: FlowState) -> None:
        record = await self._repository.find_active_refresh_record(
            state["identity_id"], self._codec.hash_opaque_token(state["refresh_token"])
        )
        if record is None:
            raise TokenError(TokenErrorReason.INVALID, "refresh record not found")
        if self._clock() >= record.expires_at:
            raise TokenError(TokenErrorReason.EXPIRED, "refresh record expired")
        state["refresh_record"] = record

    async def _step_consume_refresh_record(self, state: FlowState) -> None:
        # Suppression strictement unique: un refresh concurrent perd ici
        if not await self._repository.delete_refresh_record(state["refresh_record"].id):
            raise TokenError(TokenErrorReason.USED, "refresh token already rotated")

    # ── Tokens à usage unique ────────────────────────────────────────────────

    async def _step_consume_reset_token(self, state: FlowState) -> None:
        await self._ledger.consume(state["identity_id"], state["token"], TokenPurpose.PASSWORD_RESET)

    async def _step_consume_verification_token(self, state: FlowState) -> None:
        await self._ledger.consume(state["identity_id"], state["token"], TokenPurpose.VERIFICATION)

    async def _step_issue_reset_token(self, state: FlowState) -> None:
        state["reset_token"] = await self._ledger.issue(state["identity"].id, TokenPurpose.PASSWORD_RESET)

    async def _step_issue_setup_token(self, state: FlowState) -> None:
        if state.get("password_hash") is None and state.get("setup_email"):
            state["setup_token"] = await self._ledger.issue(state["identity"].id, TokenPurpose.VERIFICATION)

    # ══════════════════════════════════════════════════════════════════════════
    # HELPERS
    # ══════════════════════════════════════════════════════════════════════════

    async def _resolve_login_contact(self, contact: str, contact_type: Optional[str]):
        """
        Type de contact de connexion (toujours un type primaire).

        Returns:
            (ContactType, type de base, contact formaté)

        Raises:
            ValidationError: Type indétectable, non primaire ou inconnu
        """
        requested = contact_type or detect_contact_type(contact or "")
        if requested == UNKNOWN:
            raise ValidationError(
                "Unable to detect contact type",
                ["Please specify contact type or use a valid email/phone"],
            )

        type_name = primary_type_for(requested) or normalize_type_name(requested)
        if not is_primary_type(type_name):
            raise ValidationError(
                "Invalid login method",
                ["You must use your primary email or primary mobile number to login"],
            )

        type_record: Optional[ContactType] = await self._repository.find_contact_type_by_name(type_name)
        if type_record is None:
            raise ValidationError("Invalid contact type", [f"Contact type '{type_name}' does not exist"])

        base = base_type(type_name)
        return type_record, base, format_contact(contact or "", base)

    async def _guard(self, operation: str, action: Callable[[], Awaitable[AuthResult]]) -> AuthResult:
        """AuthError → AuthResult. Les autres exceptions se propagent."""
        try:
            return await action()
        except AuthError as exc:
            extra = {"operation": operation, "error_kind": exc.kind.value}
            if isinstance(exc, TokenError):
                extra["token_reason"] = exc.reason.value
            self._logger.warn("auth_operation_failed", **extra)
            return AuthResult.failure(exc)

    async def _snapshot(self, identity: Identity) -> IdentitySnapshot:
        roles = await self._aggregator.resolve_roles(identity.id)
        contacts = await self._repository.list_contacts(identity.id)

        snapshots: List[ContactSnapshot] = []
        for contact in contacts:
            contact_type = await self._repository.get_contact_type(contact.contact_type_id)
            snapshots.append(
                ContactSnapshot(
                    id=contact.id,
                    contact_type=contact_type.name if contact_type else "",
                    contact=contact.value,
                    is_primary=contact.is_primary,
                    is_verified=contact.is_verified,
                )
            )

        return IdentitySnapshot(
            id=identity.id,
            username=identity.username,
            first_name=identity.first_name,
            last_name=identity.last_name,
            is_active=identity.is_active,
            is_verified=identity.is_verified,
            roles=[role.name for role in roles],
            contacts=snapshots,
        )

    @staticmethod
    def _display_name(identity: Identity) -> str:
        if identity.first_name and identity.last_name:
            return f"{identity.first_name} {identity.last_name}"
        return identity.username

    async def _emit(
        self,
        event_type: AuditEventType,
        user_id: Optional[str],
        action: str,
        metadata: Optional[dict] = None,
    ) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.emit_event(event_type, user_id, action, metadata=metadata)
        except AuditEmitterError as e:
            self._logger.error("audit_emit_failed", action=action, error=str(e))
