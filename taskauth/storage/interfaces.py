"""
TASKAUTH - Storage Interfaces

Contrat du collaborateur de persistance consommé par le noyau
d'authentification. Les opérations sont abstraites (pas de SQL): une
implémentation base de données et l'implémentation mémoire doivent
respecter la même sémantique.

Règles:
    - Historique des mots de passe append-only (jamais modifié)
    - Seul le hash des tokens opaques est persisté
    - Suppressions logiques (is_deleted) pour rôles et jointures
    - transaction(): toutes les écritures commitées ou aucune
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncContextManager, List, Optional

from ..core.interfaces import utc_now


# ══════════════════════════════════════════════════════════════════════════════
# RECORDS
# ══════════════════════════════════════════════════════════════════════════════


@dataclass
class Identity:
    """Utilisateur (propriété du store utilisateurs externe)."""

    id: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True
    is_verified: bool = False
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class ContactType:
    """Type de contact (email, mobile, primary email...)."""

    id: str
    name: str
    is_active: bool = True


@dataclass
class Contact:
    """Contact (email/téléphone) rattaché à une identité."""

    id: str
    identity_id: str
    contact_type_id: str
    value: str
    is_primary: bool = False
    is_verified: bool = False
    is_active: bool = True
    is_deleted: bool = False
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class CredentialRecord:
    """Entrée d'historique de mot de passe. Immuable une fois écrite."""

    id: str
    identity_id: str
    password_hash: str
    created_at: datetime
    sequence: int
    created_by: Optional[str] = None


@dataclass
class Role:
    """Rôle nommé, unique, désactivable et supprimable logiquement."""

    id: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    is_deleted: bool = False


@dataclass
class PermissionRecord:
    """Couple (resource, action) unique."""

    id: str
    resource: str
    action: str
    description: Optional[str] = None


@dataclass
class RolePermission:
    """Jointure rôle ↔ permission."""

    id: str
    role_id: str
    permission_id: str
    is_active: bool = True
    is_deleted: bool = False


@dataclass
class UserRole:
    """Jointure identité ↔ rôle."""

    id: str
    identity_id: str
    role_id: str
    assigned_by: Optional[str] = None
    is_active: bool = True
    is_deleted: bool = False


@dataclass
class SingleUseTokenRecord:
    """Token à usage unique (reset / vérification). Seul le hash est stocké."""

    id: str
    identity_id: str
    token_hash: str
    purpose: str
    expires_at: datetime
    is_used: bool = False
    used_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class RefreshRecord:
    """Trace persistée d'un refresh token (hash uniquement)."""

    id: str
    identity_id: str
    token_hash: str
    expires_at: datetime
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)


class RepositoryError(Exception):
    """Erreur d'infrastructure du dépôt (jamais convertie en AuthResult)."""

    pass


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACE
# ══════════════════════════════════════════════════════════════════════════════


class IAuthRepository(ABC):
    """
    Interface du dépôt d'authentification.

    Toutes les méthodes de lecture/écriture sont asynchrones (points de
    suspension). Une écriture hors transaction est commitée immédiatement.
    """

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        Ouvre une transaction (context manager async).

        Un appel imbriqué rejoint la transaction englobante. Toute exception
        sortant du bloc annule l'ensemble des écritures puis se propage.
        """
        pass

    # ── Identités ────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_identity(
        self,
        username: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        created_by: Optional[str] = None,
        is_verified: bool = False,
    ) -> Identity:
        pass

    @abstractmethod
    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        pass

    @abstractmethod
    async def find_identity_by_username(self, username: str) -> Optional[Identity]:
        """Recherche insensible à la casse."""
        pass

    @abstractmethod
    async def find_identity_by_primary_contact(self, value: str, contact_type_id: str) -> Optional[Identity]:
        """Identité dont le contact (valeur formatée, type) est primaire et actif."""
        pass

    @abstractmethod
    async def set_identity_verified(self, identity_id: str, verified: bool = True) -> None:
        pass

    @abstractmethod
    async def set_identity_active(self, identity_id: str, active: bool) -> None:
        pass

    # ── Contacts ─────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_contact_type(self, name: str) -> ContactType:
        pass

    @abstractmethod
    async def list_contact_types(self) -> List[ContactType]:
        pass

    @abstractmethod
    async def get_contact_type(self, contact_type_id: str) -> Optional[ContactType]:
        pass

    @abstractmethod
    async def find_contact_type_by_name(self, name: str) -> Optional[ContactType]:
        """Recherche insensible à la casse, "primary_email" == "primary email"."""
        pass

    @abstractmethod
    async def create_contact(
        self,
        identity_id: str,
        contact_type_id: str,
        value: str,
        is_primary: bool = False,
    ) -> Contact:
        pass

    @abstractmethod
    async def find_contact_by_value(self, value: str) -> Optional[Contact]:
        """Contact actif non supprimé portant cette valeur formatée."""
        pass

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        pass

    @abstractmethod
    async def list_contacts(self, identity_id: str) -> List[Contact]:
        pass

    # ── Historique des mots de passe ─────────────────────────────────────────

    @abstractmethod
    async def append_credential_history(
        self, identity_id: str, password_hash: str, created_by: Optional[str] = None
    ) -> CredentialRecord:
        pass

    @abstractmethod
    async def latest_credential(self, identity_id: str) -> Optional[CredentialRecord]:
        """Entrée la plus récente = mot de passe courant."""
        pass

    @abstractmethod
    async def list_credentials(self, identity_id: str) -> List[CredentialRecord]:
        """Historique complet, du plus ancien au plus récent."""
        pass

    # ── Rôles et permissions ─────────────────────────────────────────────────

    @abstractmethod
    async def create_role(self, name: str, description: Optional[str] = None) -> Role:
        pass

    @abstractmethod
    async def get_role(self, role_id: str) -> Optional[Role]:
        pass

    @abstractmethod
    async def find_role_by_name(self, name: str) -> Optional[Role]:
        """Rôle non supprimé portant ce nom (insensible à la casse)."""
        pass

    @abstractmethod
    async def update_role(
        self, role_id: str, is_active: Optional[bool] = None, is_deleted: Optional[bool] = None
    ) -> Role:
        pass

    @abstractmethod
    async def create_permission(self, resource: str, action: str, description: Optional[str] = None) -> PermissionRecord:
        pass

    @abstractmethod
    async def find_permission(self, resource: str, action: str) -> Optional[PermissionRecord]:
        pass

    @abstractmethod
    async def grant_role_permission(self, role_id: str, permission_id: str) -> RolePermission:
        """Crée ou réactive la jointure."""
        pass

    @abstractmethod
    async def revoke_role_permission(self, role_id: str, permission_id: str) -> bool:
        pass

    @abstractmethod
    async def assign_user_role(self, identity_id: str, role_id: str, assigned_by: Optional[str] = None) -> UserRole:
        """Crée ou réactive la jointure."""
        pass

    @abstractmethod
    async def revoke_user_role(self, identity_id: str, role_id: str) -> bool:
        pass

    @abstractmethod
    async def find_active_roles_for_identity(self, identity_id: str) -> List[Role]:
        """Rôles actifs, non supprimés, via jointures actives non supprimées."""
        pass

    @abstractmethod
    async def find_active_permissions_for_roles(self, role_ids: List[str]) -> List[PermissionRecord]:
        """Permissions via jointures actives non supprimées (doublons possibles)."""
        pass

    @abstractmethod
    async def find_identities_with_role(self, role_id: str) -> List[str]:
        """Identités détenant le rôle via une jointure active non supprimée."""
        pass

    # ── Tokens à usage unique ────────────────────────────────────────────────

    @abstractmethod
    async def create_single_use_token(
        self, identity_id: str, token_hash: str, purpose: str, expires_at: datetime
    ) -> SingleUseTokenRecord:
        pass

    @abstractmethod
    async def find_single_use_token(self, token_hash: str, purpose: str) -> Optional[SingleUseTokenRecord]:
        """Token par hash, utilisé ou non (l'appelant distingue les états)."""
        pass

    @abstractmethod
    async def mark_single_use_token_used(self, token_id: str) -> bool:
        """
        Marque le token utilisé.

        Returns:
            True si CET appel a effectué la transition unused → used
        """
        pass

    @abstractmethod
    async def invalidate_single_use_tokens(self, identity_id: str, purpose: str) -> int:
        """Marque utilisés tous les tokens non utilisés (identité, usage)."""
        pass

    # ── Refresh tokens ───────────────────────────────────────────────────────

    @abstractmethod
    async def create_refresh_record(self, identity_id: str, token_hash: str, expires_at: datetime) -> RefreshRecord:
        pass

    @abstractmethod
    async def find_active_refresh_record(self, identity_id: str, token_hash: str) -> Optional[RefreshRecord]:
        pass

    @abstractmethod
    async def delete_refresh_record(self, record_id: str) -> bool:
        """
        Supprime l'enregistrement.

        Returns:
            True si CET appel a supprimé la ligne (sémantique DELETE ... RETURNING)
        """
        pass

    @abstractmethod
    async def delete_refresh_records_by_hash(self, identity_id: str, token_hash: str) -> int:
        pass

    @abstractmethod
    async def deactivate_all_refresh_records(self, identity_id: str) -> int:
        pass

    @abstractmethod
    async def list_refresh_records(self, identity_id: str) -> List[RefreshRecord]:
        pass
