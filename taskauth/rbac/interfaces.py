"""
TASKAUTH - Interfaces RBAC

Permissions (resource, action), agrégation par rôles et cache.

Règles:
    - Action: ensemble fermé; "manage" couvre toutes les actions d'une ressource
    - Le format "resource:action" n'existe qu'à la frontière (parse / str)
    - L'élargissement "manage" est appliqué à la vérification, jamais au
      stockage: le cache contient la liste littérale
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union


RESOURCE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


class Action(Enum):
    """Actions autorisables (ensemble fermé)."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"
    ASSIGN = "assign"
    REVOKE = "revoke"
    # Actions du module auth
    REGISTER = "register"
    LOGIN = "login"
    LOGOUT = "logout"
    REFRESH = "refresh"
    RESET_PASSWORD = "reset_password"
    CHANGE_PASSWORD = "change_password"
    VERIFY_CONTACT = "verify_contact"


class PermissionLogic(Enum):
    """Combinaison de plusieurs permissions requises."""

    AND = "AND"
    OR = "OR"


@dataclass(frozen=True)
class Permission:
    """
    Permission (resource, action).

    Example:
        Permission.parse("tasks:read") == Permission("tasks", Action.READ)
        str(Permission("tasks", Action.MANAGE)) == "tasks:manage"
    """

    resource: str
    action: Action

    def __post_init__(self):
        if not isinstance(self.resource, str) or not RESOURCE_PATTERN.match(self.resource):
            raise ValueError(f"Invalid resource: {self.resource!r}")
        if not isinstance(self.action, Action):
            raise ValueError(f"Invalid action: {self.action!r}")

    def __str__(self) -> str:
        return f"{self.resource}:{self.action.value}"

    @classmethod
    def parse(cls, value: str) -> "Permission":
        """
        Raises:
            ValueError: Format différent de "resource:action" ou action inconnue
        """
        if not isinstance(value, str) or value.count(":") != 1:
            raise ValueError(f"Invalid permission string: {value!r}")
        resource, action = value.split(":")
        return cls(resource, Action(action))

    @classmethod
    def try_parse(cls, value: Union[str, "Permission"]) -> Optional["Permission"]:
        if isinstance(value, Permission):
            return value
        try:
            return cls.parse(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class RoleInfo:
    """Rôle actif résolu (id, nom)."""

    id: str
    name: str


@dataclass(frozen=True)
class CachedPermissionSet:
    """
    Permissions résolues d'une identité.

    Attributes:
        identity_id: Clé du cache
        permissions: Chaînes "resource:action" littérales, dédupliquées
        roles: Rôles actifs résolus
        cached_at: Instant de résolution
        expires_at: Expiration absolue
    """

    identity_id: str
    permissions: Tuple[str, ...]
    roles: Tuple[RoleInfo, ...]
    cached_at: datetime
    expires_at: datetime

    @property
    def role_names(self) -> List[str]:
        return [role.name for role in self.roles]

    @property
    def role_ids(self) -> List[str]:
        return [role.id for role in self.roles]

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


class IPermissionChecker(ABC):
    """
    Interface vérification de permissions.

    Une chaîne requise malformée ne correspond jamais.
    """

    @abstractmethod
    def has(self, granted: Iterable[str], required: Union[str, Permission]) -> bool:
        """Correspondance exacte ou "resource:manage" détenu."""
        pass

    @abstractmethod
    def has_any(self, granted: Iterable[str], required: Iterable[Union[str, Permission]]) -> bool:
        """OR. Liste vide → True."""
        pass

    @abstractmethod
    def has_all(self, granted: Iterable[str], required: Iterable[Union[str, Permission]]) -> bool:
        """AND. Liste vide → True."""
        pass


class IPermissionAggregator(ABC):
    """Interface agrégation des permissions par rôles actifs."""

    @abstractmethod
    async def resolve_roles(self, identity_id: str) -> List[RoleInfo]:
        """Rôles actifs, non supprimés, attribués à l'identité."""
        pass

    @abstractmethod
    async def resolve_permissions(self, role_ids: List[str]) -> List[str]:
        """Union dédupliquée (ordre stable) des permissions des rôles."""
        pass

    @abstractmethod
    async def resolve(self, identity_id: str) -> Tuple[List[RoleInfo], List[str]]:
        """Rôles puis permissions de l'identité."""
        pass


class IPermissionCache(ABC):
    """
    Interface cache de permissions (par identité, TTL absolu).

    Cycle par clé: absent → peuplé(expiration) → expiré → absent.
    """

    @abstractmethod
    async def get(self, identity_id: str) -> CachedPermissionSet:
        pass

    @abstractmethod
    def invalidate(self, identity_id: str) -> bool:
        """Retrait immédiat. True si une entrée existait."""
        pass

    @abstractmethod
    def invalidate_many(self, identity_ids: Iterable[str]) -> int:
        pass

    @abstractmethod
    def invalidate_all(self) -> int:
        pass

    @abstractmethod
    def stats(self) -> Dict[str, Any]:
        pass
