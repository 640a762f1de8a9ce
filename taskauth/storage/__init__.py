"""
TASKAUTH - Storage

Contrat de persistance consommé par le noyau + implémentation mémoire.
"""

from .interfaces import (
    # Interfaces
    IAuthRepository,
    # Records
    Identity,
    ContactType,
    Contact,
    CredentialRecord,
    Role,
    PermissionRecord,
    RolePermission,
    UserRole,
    SingleUseTokenRecord,
    RefreshRecord,
    # Exceptions
    RepositoryError,
)
from .memory_repository import InMemoryAuthRepository
from .seed import (
    seed_defaults,
    SeedResult,
    CONTACT_TYPES,
    RESOURCES,
    ACTIONS,
    SUPER_ADMIN_ROLE,
    ADMIN_ROLE,
    USER_ROLE,
)

__all__ = [
    # Interfaces
    "IAuthRepository",
    # Records
    "Identity",
    "ContactType",
    "Contact",
    "CredentialRecord",
    "Role",
    "PermissionRecord",
    "RolePermission",
    "UserRole",
    "SingleUseTokenRecord",
    "RefreshRecord",
    # Implementations
    "InMemoryAuthRepository",
    "seed_defaults",
    "SeedResult",
    "CONTACT_TYPES",
    "RESOURCES",
    "ACTIONS",
    "SUPER_ADMIN_ROLE",
    "ADMIN_ROLE",
    "USER_ROLE",
    # Exceptions
    "RepositoryError",
]
