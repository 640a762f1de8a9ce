"""
TASKAUTH - Role Administration

Mutations des rôles et permissions. Chaque mutation invalide le cache
de permissions de TOUTES les identités affectées, après commit.

Règles:
    - Attribution / retrait d'un rôle → invalidate(identité)
    - Permission accordée / retirée, rôle (dés)activé → invalidate de
      chaque détenteur du rôle
    - Suppression d'un rôle encore attribué refusée sauf force=True;
      suppression → invalidate_all()
"""

from typing import List, Optional, Union

from ..audit import AuditEmitter, AuditEmitterError, AuditEventType
from ..core.errors import ConflictError, NotFoundError, StateError, ValidationError
from ..logging import StructuredLogger
from ..storage.interfaces import IAuthRepository, Role
from .interfaces import IPermissionCache, Permission


class RoleAdmin:
    """
    Administration des rôles.

    Contrairement à l'orchestrateur, lève les erreurs métier (AuthError):
    c'est une API interne consommée par les handlers d'administration.

    Example:
        admin = RoleAdmin(repository, cache)
        await admin.grant_permission(role.id, "tasks:manage")
    """

    def __init__(
        self,
        repository: IAuthRepository,
        cache: IPermissionCache,
        audit: Optional[AuditEmitter] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self._repository = repository
        self._cache = cache
        self._audit = audit
        self._logger = logger or StructuredLogger("taskauth.rbac.role_admin")

    # ══════════════════════════════════════════════════════════════════════════
    # RÔLES
    # ══════════════════════════════════════════════════════════════════════════

    async def create_role(self, name: str, description: Optional[str] = None, performed_by: Optional[str] = None) -> Role:
        """
        Raises:
            ValidationError: Nom vide
            ConflictError: Nom déjà utilisé
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Role name is required")

        async with self._repository.transaction():
            if await self._repository.find_role_by_name(name):
                raise ConflictError("Role already exists", [f"Role '{name}' already exists"])
            role = await self._repository.create_role(name, description)

        await self._emit(AuditEventType.ROLE_CHANGE, performed_by, "role_created", role.id, {"role_name": name})
        return role

    async def set_role_active(self, role_id: str, active: bool, performed_by: Optional[str] = None) -> Role:
        async with self._repository.transaction():
            await self._require_role(role_id)
            role = await self._repository.update_role(role_id, is_active=active)
            holders = await self._repository.find_identities_with_role(role_id)

        self._cache.invalidate_many(holders)
        await self._emit(
            AuditEventType.ROLE_CHANGE,
            performed_by,
            "role_activated" if active else "role_deactivated",
            role_id,
            {"affected_identities": len(holders)},
        )
        return role

    async def delete_role(self, role_id: str, force: bool = False, performed_by: Optional[str] = None) -> None:
        """
        Suppression logique.

        Raises:
            NotFoundError: Rôle inconnu
            StateError: Rôle encore attribué et force=False
        """
        async with self._repository.transaction():
            await self._require_role(role_id)
            holders = await self._repository.find_identities_with_role(role_id)

            if holders and not force:
                raise StateError(
                    "Cannot delete role with assigned users",
                    [f"Role is assigned to {len(holders)} user(s)"],
                )

            for identity_id in holders:
                await self._repository.revoke_user_role(identity_id, role_id)
            await self._repository.update_role(role_id, is_active=False, is_deleted=True)

        self._cache.invalidate_all()
        await self._emit(
            AuditEventType.ROLE_CHANGE,
            performed_by,
            "role_deleted",
            role_id,
            {"forced": force, "affected_identities": len(holders)},
        )

    # ══════════════════════════════════════════════════════════════════════════
    # ATTRIBUTIONS
    # ══════════════════════════════════════════════════════════════════════════

    async def assign_role(self, identity_id: str, role_id: str, assigned_by: Optional[str] = None) -> None:
        """
        Raises:
            NotFoundError: Identité ou rôle inconnu
        """
        async with self._repository.transaction():
            await self._require_identity(identity_id)
            await self._require_role(role_id)
            await self._repository.assign_user_role(identity_id, role_id, assigned_by)

        self._cache.invalidate(identity_id)
        await self._emit(AuditEventType.ROLE_CHANGE, assigned_by, "role_assigned", identity_id, {"role_id": role_id})

    async def revoke_role(self, identity_id: str, role_id: str, performed_by: Optional[str] = None) -> bool:
        async with self._repository.transaction():
            revoked = await self._repository.revoke_user_role(identity_id, role_id)

        self._cache.invalidate(identity_id)
        if revoked:
            await self._emit(AuditEventType.ROLE_CHANGE, performed_by, "role_revoked", identity_id, {"role_id": role_id})
        return revoked

    # ══════════════════════════════════════════════════════════════════════════
    # PERMISSIONS
    # ══════════════════════════════════════════════════════════════════════════

    async def grant_permission(
        self, role_id: str, permission: Union[str, Permission], performed_by: Optional[str] = None
    ) -> List[str]:
        """
        Accorde une permission au rôle (créée si absente).

        Returns:
            Identités dont le cache a été invalidé
        """
        parsed = self._parse(permission)

        async with self._repository.transaction():
            await self._require_role(role_id)
            record = await self._repository.find_permission(parsed.resource, parsed.action.value)
            if record is None:
                record = await self._repository.create_permission(parsed.resource, parsed.action.value)
            await self._repository.grant_role_permission(role_id, record.id)
            holders = await self._repository.find_identities_with_role(role_id)

        self._cache.invalidate_many(holders)
        await self._emit(
            AuditEventType.PERMISSION_CHANGE,
            performed_by,
            "permission_granted",
            role_id,
            {"permission": str(parsed), "affected_identities": len(holders)},
        )
        return holders

    async def revoke_permission(
        self, role_id: str, permission: Union[str, Permission], performed_by: Optional[str] = None
    ) -> List[str]:
        parsed = self._parse(permission)

        async with self._repository.transaction():
            await self._require_role(role_id)
            record = await self._repository.find_permission(parsed.resource, parsed.action.value)
            revoked = record is not None and await self._repository.revoke_role_permission(role_id, record.id)
            holders = await self._repository.find_identities_with_role(role_id)

        self._cache.invalidate_many(holders)
        if revoked:
            await self._emit(
                AuditEventType.PERMISSION_CHANGE,
                performed_by,
                "permission_revoked",
                role_id,
                {"permission": str(parsed), "affected_identities": len(holders)},
            )
        return holders

    # ══════════════════════════════════════════════════════════════════════════
    # HELPERS
    # ══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _parse(permission: Union[str, Permission]) -> Permission:
        parsed = Permission.try_parse(permission)
        if parsed is None:
            raise ValidationError("Invalid permission", [f"'{permission}' is not a valid resource:action pair"])
        return parsed

    async def _require_role(self, role_id: str) -> Role:
        role = await self._repository.get_role(role_id)
        if role is None or role.is_deleted:
            raise NotFoundError("Role not found", [f"Role '{role_id}' does not exist"])
        return role

    async def _require_identity(self, identity_id: str) -> None:
        if await self._repository.get_identity(identity_id) is None:
            raise NotFoundError("User not found", [f"User '{identity_id}' does not exist"])

    async def _emit(self, event_type: AuditEventType, user_id: Optional[str], action: str, resource_id: str, metadata: dict) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.emit_event(event_type, user_id, action, resource_id=resource_id, metadata=metadata)
        except AuditEmitterError as e:
            self._logger.error("audit_emit_failed", action=action, error=str(e))
