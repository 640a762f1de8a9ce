"""
TASKAUTH - Seed des données de référence

Types de contact, rôles par défaut et permissions CRUD + manage.
Idempotent: un élément déjà présent est réutilisé.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from .interfaces import IAuthRepository


CONTACT_TYPES: Tuple[str, ...] = (
    "email",
    "mobile",
    "phone",
    "whatsapp",
    "telegram",
    "primary email",
    "primary mobile",
)

RESOURCES: Tuple[str, ...] = ("users", "roles", "permissions", "contacts", "projects", "tasks")
ACTIONS: Tuple[str, ...] = ("create", "read", "update", "delete", "manage")

SUPER_ADMIN_ROLE = "Super Admin"
ADMIN_ROLE = "Admin"
USER_ROLE = "User"

ROLE_DESCRIPTIONS: Dict[str, str] = {
    SUPER_ADMIN_ROLE: "Full access to all resources",
    ADMIN_ROLE: "Administrative access to users and tasks",
    USER_ROLE: "Default role with read-only access",
}


@dataclass
class SeedResult:
    """Identifiants créés ou retrouvés par seed_defaults."""

    contact_types: Dict[str, str] = field(default_factory=dict)
    roles: Dict[str, str] = field(default_factory=dict)
    permissions: Dict[str, str] = field(default_factory=dict)


def _grants_for(role_name: str) -> Iterable[Tuple[str, str]]:
    if role_name == SUPER_ADMIN_ROLE:
        return [(r, "manage") for r in RESOURCES]
    if role_name == ADMIN_ROLE:
        grants: List[Tuple[str, str]] = [(r, a) for r in RESOURCES for a in ACTIONS if a != "manage"]
        grants += [("users", "manage"), ("tasks", "manage"), ("projects", "manage")]
        return grants
    return [(r, "read") for r in RESOURCES]


async def seed_defaults(repository: IAuthRepository) -> SeedResult:
    """
    Crée les données de référence dans une seule transaction.

    Returns:
        SeedResult (nom → id)
    """
    result = SeedResult()

    async with repository.transaction():
        for name in CONTACT_TYPES:
            contact_type = await repository.find_contact_type_by_name(name)
            if contact_type is None:
                contact_type = await repository.create_contact_type(name)
            result.contact_types[name] = contact_type.id

        for resource in RESOURCES:
            for action in ACTIONS:
                permission = await repository.find_permission(resource, action)
                if permission is None:
                    permission = await repository.create_permission(
                        resource, action, description=f"{action.capitalize()} {resource}"
                    )
                result.permissions[f"{resource}:{action}"] = permission.id

        for role_name, description in ROLE_DESCRIPTIONS.items():
            role = await repository.find_role_by_name(role_name)
            if role is None:
                role = await repository.create_role(role_name, description)
            result.roles[role_name] = role.id

            for resource, action in _grants_for(role_name):
                await repository.grant_role_permission(role.id, result.permissions[f"{resource}:{action}"])

    return result
