"""
TASKAUTH - Interfaces Orchestrator

Contrats exposés à la couche transport: requêtes, résultats structurés
et opérations d'authentification.

Règles:
    - Les opérations ne lèvent pas d'AuthError: elles retournent un
      AuthResult (success=False + error_kind)
    - Les erreurs d'infrastructure se propagent après rollback
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from ..auth.interfaces import TokenClaims
from ..core.errors import AuthError, ErrorKind
from ..rbac.interfaces import PermissionLogic
from ..rbac.permission_checker import PermissionChecker


_CHECKER = PermissionChecker()


# ══════════════════════════════════════════════════════════════════════════════
# REQUÊTES
# ══════════════════════════════════════════════════════════════════════════════


class ContactInput(BaseModel):
    """Contact déclaré (type par nom: "email", "primary email"...)."""

    contact: str
    contact_type: str
    is_primary: Optional[bool] = None


class RegisterRequest(BaseModel):
    username: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    contacts: List[ContactInput] = Field(default_factory=list)


class CreateUserRequest(BaseModel):
    """
    Création d'utilisateur par un administrateur.

    Un seul rôle est attribué: le premier de role_ids, sinon le rôle
    par défaut. Sans mot de passe, un email de configuration est envoyé.
    """

    username: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    contacts: List[ContactInput] = Field(default_factory=list)
    role_ids: List[str] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════════
# RÉSULTATS
# ══════════════════════════════════════════════════════════════════════════════


class ContactSnapshot(BaseModel):
    id: str
    contact_type: str
    contact: str
    is_primary: bool
    is_verified: bool


class IdentitySnapshot(BaseModel):
    """Vue publique d'une identité (jamais de hash)."""

    id: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool
    is_verified: bool
    roles: List[str] = Field(default_factory=list)
    contacts: List[ContactSnapshot] = Field(default_factory=list)


class AuthResult(BaseModel):
    """Résultat structuré de toute opération de l'orchestrateur."""

    success: bool
    message: str
    user: Optional[IdentitySnapshot] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    permissions: Optional[List[str]] = None
    errors: List[str] = Field(default_factory=list)
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, message: str, **fields) -> "AuthResult":
        return cls(success=True, message=message, **fields)

    @classmethod
    def failure(cls, error: AuthError) -> "AuthResult":
        return cls(
            success=False,
            message=error.public_message,
            errors=list(error.errors),
            error_kind=error.kind,
        )


@dataclass(frozen=True)
class AuthContext:
    """
    Contexte d'une requête authentifiée (équivalent middleware).

    Attributes:
        identity_id: Identité du porteur du token
        username: Nom d'utilisateur
        roles: Noms des rôles actifs
        permissions: Permissions littérales (cache)
        claims: Claims du token d'accès
    """

    identity_id: str
    username: str
    roles: Tuple[str, ...]
    permissions: Tuple[str, ...]
    claims: TokenClaims

    def can(self, required: Union[str, Sequence[str]], logic: PermissionLogic = PermissionLogic.AND) -> bool:
        wanted = [required] if isinstance(required, str) else list(required)
        if logic == PermissionLogic.OR:
            return _CHECKER.has_any(self.permissions, wanted)
        return _CHECKER.has_all(self.permissions, wanted)


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACE
# ══════════════════════════════════════════════════════════════════════════════


class IAuthOrchestrator(ABC):
    """Interface de l'orchestrateur d'authentification."""

    @abstractmethod
    async def register(self, request: RegisterRequest) -> AuthResult:
        """Inscription (pas de connexion automatique, aucun token émis)."""
        pass

    @abstractmethod
    async def login(self, contact: str, password: str, contact_type: Optional[str] = None) -> AuthResult:
        """Connexion par contact primaire (email / mobile)."""
        pass

    @abstractmethod
    async def logout(self, access_claims: Optional[TokenClaims], refresh_token: Optional[str]) -> AuthResult:
        """Déconnexion idempotente: toujours success=True."""
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> AuthResult:
        """Rotation: l'ancien refresh token devient inutilisable."""
        pass

    @abstractmethod
    async def forgot_password(self, contact: str, contact_type: Optional[str] = None) -> AuthResult:
        """Réponse identique que le contact existe ou non."""
        pass

    @abstractmethod
    async def reset_password(self, token: str, new_password: str, identity_id: str) -> AuthResult:
        pass

    @abstractmethod
    async def change_password(self, identity_id: str, old_password: str, new_password: str) -> AuthResult:
        pass

    @abstractmethod
    async def setup_password(self, token: str, identity_id: str, new_password: str) -> AuthResult:
        pass

    @abstractmethod
    async def verify_contact(self, identity_id: str, contact_id: str, code: str) -> AuthResult:
        pass

    @abstractmethod
    async def check_permission(
        self,
        identity_id: str,
        required: Union[str, Sequence[str]],
        logic: PermissionLogic = PermissionLogic.AND,
    ) -> bool:
        pass
