"""
TASKAUTH - Permission Aggregator Implementation

Union des permissions de tous les rôles actifs d'une identité.
"""

from typing import Dict, List, Optional, Tuple

from ..logging import StructuredLogger
from ..storage.interfaces import IAuthRepository
from .interfaces import Action, IPermissionAggregator, Permission, RoleInfo


class PermissionAggregator(IPermissionAggregator):
    """
    Agrégateur de permissions.

    Une permission accordée par deux rôles compte une seule fois.
    Une action hors de l'ensemble fermé est ignorée (et journalisée).

    Example:
        aggregator = PermissionAggregator(repository)
        roles, permissions = await aggregator.resolve(identity_id)
    """

    def __init__(self, repository: IAuthRepository, logger: Optional[StructuredLogger] = None):
        self._repository = repository
        self._logger = logger or StructuredLogger("taskauth.rbac.aggregator")

    async def resolve_roles(self, identity_id: str) -> List[RoleInfo]:
        if not identity_id:
            return []

        roles = await self._repository.find_active_roles_for_identity(identity_id)

        resolved: Dict[str, RoleInfo] = {}
        for role in roles:
            if role.id not in resolved:
                resolved[role.id] = RoleInfo(id=role.id, name=role.name)
        return list(resolved.values())

    async def resolve_permissions(self, role_ids: List[str]) -> List[str]:
        if not role_ids:
            return []

        records = await self._repository.find_active_permissions_for_roles(list(role_ids))

        permissions: Dict[str, None] = {}
        for record in records:
            try:
                permission = Permission(record.resource, Action(record.action))
            except ValueError:
                self._logger.warn(
                    "permission_skipped",
                    permission_id=record.id,
                    resource=record.resource,
                    action=record.action,
                )
                continue
            permissions.setdefault(str(permission), None)

        return list(permissions)

    async def resolve(self, identity_id: str) -> Tuple[List[RoleInfo], List[str]]:
        roles = await self.resolve_roles(identity_id)
        permissions = await self.resolve_permissions([role.id for role in roles])
        return roles, permissions
