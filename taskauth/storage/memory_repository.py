"""
TASKAUTH - In-Memory Auth Repository

Implémentation mémoire de IAuthRepository.

Transactions:
    Chaque écriture effectuée dans une transaction enregistre une action
    d'annulation dans un journal porté par ContextVar (propagation
    automatique au sein d'une même tâche asyncio). En cas d'exception le
    journal est rejoué en ordre inverse.

Note:
    Stockage en mémoire pour tests et intégrateurs sans base de données.
"""

import itertools
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from ..core.interfaces import Clock, utc_now
from .interfaces import (
    Contact,
    ContactType,
    CredentialRecord,
    IAuthRepository,
    Identity,
    PermissionRecord,
    RefreshRecord,
    RepositoryError,
    Role,
    RolePermission,
    SingleUseTokenRecord,
    UserRole,
)


UndoAction = Callable[[], None]


def _normalize_name(name: str) -> str:
    return " ".join((name or "").strip().lower().replace("_", " ").split())


def _new_id() -> str:
    return str(uuid.uuid4())


class InMemoryAuthRepository(IAuthRepository):
    """
    Dépôt mémoire avec transactions par journal d'annulation.

    Example:
        repository = InMemoryAuthRepository()
        async with repository.transaction():
            identity = await repository.create_identity("alice")
            await repository.append_credential_history(identity.id, password_hash)
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._undo_log: ContextVar[Optional[List[UndoAction]]] = ContextVar(
            f"taskauth_undo_log_{id(self)}", default=None
        )
        self._credential_sequence = itertools.count(1)

        self._identities: Dict[str, Identity] = {}
        self._contact_types: Dict[str, ContactType] = {}
        self._contacts: Dict[str, Contact] = {}
        self._credentials: Dict[str, CredentialRecord] = {}
        self._roles: Dict[str, Role] = {}
        self._permissions: Dict[str, PermissionRecord] = {}
        self._role_permissions: Dict[str, RolePermission] = {}
        self._user_roles: Dict[str, UserRole] = {}
        self._single_use_tokens: Dict[str, SingleUseTokenRecord] = {}
        self._refresh_records: Dict[str, RefreshRecord] = {}

        self.commit_count = 0
        self.rollback_count = 0

    # ══════════════════════════════════════════════════════════════════════════
    # TRANSACTIONS
    # ══════════════════════════════════════════════════════════════════════════

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._undo_log.get() is not None:
            # Transaction englobante: on la rejoint
            yield
            return

        undo_log: List[UndoAction] = []
        token = self._undo_log.set(undo_log)
        try:
            yield
        except BaseException:
            for undo in reversed(undo_log):
                undo()
            self.rollback_count += 1
            raise
        finally:
            self._undo_log.reset(token)
        self.commit_count += 1

    @property
    def in_transaction(self) -> bool:
        return self._undo_log.get() is not None

    def _track(self, undo: UndoAction) -> None:
        undo_log = self._undo_log.get()
        if undo_log is not None:
            undo_log.append(undo)

    def _insert(self, table: Dict[str, Any], record: Any) -> None:
        table[record.id] = record
        self._track(lambda: table.pop(record.id, None))

    def _remove(self, table: Dict[str, Any], record_id: str) -> Optional[Any]:
        record = table.pop(record_id, None)
        if record is not None:
            self._track(lambda: table.__setitem__(record_id, record))
        return record

    def _update(self, record: Any, **changes: Any) -> None:
        previous = {name: getattr(record, name) for name in changes}
        for name, value in changes.items():
            setattr(record, name, value)

        def restore() -> None:
            for name, value in previous.items():
                setattr(record, name, value)

        self._track(restore)

    # ══════════════════════════════════════════════════════════════════════════
    # IDENTITÉS
    # ══════════════════════════════════════════════════════════════════════════

    async def create_identity(
        self,
        username: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        created_by: Optional[str] = None,
        is_verified: bool = False,
    ) -> Identity:
        if await self.find_identity_by_username(username):
            raise RepositoryError(f"Unique constraint violated: username '{username}'")

        identity = Identity(
            id=_new_id(),
            username=username,
            first_name=first_name,
            last_name=last_name,
            is_verified=is_verified,
            created_by=created_by,
            created_at=self._clock(),
        )
        self._insert(self._identities, identity)
        return identity

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        return self._identities.get(identity_id)

    async def find_identity_by_username(self, username: str) -> Optional[Identity]:
        wanted = (username or "").lower()
        for identity in self._identities.values():
            if identity.username.lower() == wanted:
                return identity
        return None

    async def find_identity_by_primary_contact(self, value: str, contact_type_id: str) -> Optional[Identity]:
        for contact in self._contacts.values():
            if (
                contact.value == value
                and contact.contact_type_id == contact_type_id
                and contact.is_primary
                and contact.is_active
                and not contact.is_deleted
            ):
                return self._identities.get(contact.identity_id)
        return None

    async def set_identity_verified(self, identity_id: str, verified: bool = True) -> None:
        self._update(self._require(self._identities, identity_id, "identity"), is_verified=verified)

    async def set_identity_active(self, identity_id: str, active: bool) -> None:
        self._update(self._require(self._identities, identity_id, "identity"), is_active=active)

    # ══════════════════════════════════════════════════════════════════════════
    # CONTACTS
    # ══════════════════════════════════════════════════════════════════════════

    async def create_contact_type(self, name: str) -> ContactType:
        if await self.find_contact_type_by_name(name):
            raise RepositoryError(f"Unique constraint violated: contact type '{name}'")
        contact_type = ContactType(id=_new_id(), name=name)
        self._insert(self._contact_types, contact_type)
        return contact_type

    async def list_contact_types(self) -> List[ContactType]:
        return list(self._contact_types.values())

    async def get_contact_type(self, contact_type_id: str) -> Optional[ContactType]:
        return self._contact_types.get(contact_type_id)

    async def find_contact_type_by_name(self, name: str) -> Optional[ContactType]:
        wanted = _normalize_name(name)
        for contact_type in self._contact_types.values():
            if _normalize_name(contact_type.name) == wanted:
                return contact_type
        return None

    async def create_contact(
        self,
        identity_id: str,
        contact_type_id: str,
        value: str,
        is_primary: bool = False,
    ) -> Contact:
        self._require(self._identities, identity_id, "identity")
        self._require(self._contact_types, contact_type_id, "contact type")
        if await self.find_contact_by_value(value):
            raise RepositoryError(f"Unique constraint violated: contact '{value}'")

        contact = Contact(
            id=_new_id(),
            identity_id=identity_id,
            contact_type_id=contact_type_id,
            value=value,
            is_primary=is_primary,
            created_at=self._clock(),
        )
        self._insert(self._contacts, contact)
        return contact

    async def find_contact_by_value(self, value: str) -> Optional[Contact]:
        for contact in self._contacts.values():
            if contact.value == value and contact.is_active and not contact.is_deleted:
                return contact
        return None

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return self._contacts.get(contact_id)

    async def list_contacts(self, identity_id: str) -> List[Contact]:
        return [
            c for c in self._contacts.values()
            if c.identity_id == identity_id and not c.is_deleted
        ]

    # ══════════════════════════════════════════════════════════════════════════
    # HISTORIQUE MOTS DE PASSE (append-only)
    # ══════════════════════════════════════════════════════════════════════════

    async def append_credential_history(
        self, identity_id: str, password_hash: str, created_by: Optional[str] = None
    ) -> CredentialRecord:
        self._require(self._identities, identity_id, "identity")
        record = CredentialRecord(
            id=_new_id(),
            identity_id=identity_id,
            password_hash=password_hash,
            created_at=self._clock(),
            sequence=next(self._credential_sequence),
            created_by=created_by,
        )
        self._insert(self._credentials, record)
        return record

    async def latest_credential(self, identity_id: str) -> Optional[CredentialRecord]:
        history = await self.list_credentials(identity_id)
        return history[-1] if history else None

    async def list_credentials(self, identity_id: str) -> List[CredentialRecord]:
        history = [r for r in self._credentials.values() if r.identity_id == identity_id]
        return sorted(history, key=lambda r: r.sequence)

    # ══════════════════════════════════════════════════════════════════════════
    # RÔLES & PERMISSIONS
    # ══════════════════════════════════════════════════════════════════════════

    async def create_role(self, name: str, description: Optional[str] = None) -> Role:
        if await self.find_role_by_name(name):
            raise RepositoryError(f"Unique constraint violated: role '{name}'")
        role = Role(id=_new_id(), name=name, description=description)
        self._insert(self._roles, role)
        return role

    async def get_role(self, role_id: str) -> Optional[Role]:
        return self._roles.get(role_id)

    async def find_role_by_name(self, name: str) -> Optional[Role]:
        wanted = (name or "").strip().lower()
        for role in self._roles.values():
            if role.name.lower() == wanted and not role.is_deleted:
                return role
        return None

    async def update_role(
        self, role_id: str, is_active: Optional[bool] = None, is_deleted: Optional[bool] = None
    ) -> Role:
        role = self._require(self._roles, role_id, "role")
        changes: Dict[str, Any] = {}
        if is_active is not None:
            changes["is_active"] = is_active
        if is_deleted is not None:
            changes["is_deleted"] = is_deleted
        if changes:
            self._update(role, **changes)
        return role

    async def create_permission(self, resource: str, action: str, description: Optional[str] = None) -> PermissionRecord:
        if await self.find_permission(resource, action):
            raise RepositoryError(f"Unique constraint violated: permission '{resource}:{action}'")
        permission = PermissionRecord(id=_new_id(), resource=resource, action=action, description=description)
        self._insert(self._permissions, permission)
        return permission

    async def find_permission(self, resource: str, action: str) -> Optional[PermissionRecord]:
        for permission in self._permissions.values():
            if permission.resource == resource and permission.action == action:
                return permission
        return None

    async def grant_role_permission(self, role_id: str, permission_id: str) -> RolePermission:
        self._require(self._roles, role_id, "role")
        self._require(self._permissions, permission_id, "permission")

        for link in self._role_permissions.values():
            if link.role_id == role_id and link.permission_id == permission_id:
                self._update(link, is_active=True, is_deleted=False)
                return link

        link = RolePermission(id=_new_id(), role_id=role_id, permission_id=permission_id)
        self._insert(self._role_permissions, link)
        return link

    async def revoke_role_permission(self, role_id: str, permission_id: str) -> bool:
        for link in self._role_permissions.values():
            if link.role_id == role_id and link.permission_id == permission_id and not link.is_deleted:
                self._update(link, is_active=False, is_deleted=True)
                return True
        return False

    async def assign_user_role(self, identity_id: str, role_id: str, assigned_by: Optional[str] = None) -> UserRole:
        self._require(self._identities, identity_id, "identity")
        self._require(self._roles, role_id, "role")

        for link in self._user_roles.values():
            if link.identity_id == identity_id and link.role_id == role_id:
                self._update(link, is_active=True, is_deleted=False, assigned_by=assigned_by)
                return link

        link = UserRole(id=_new_id(), identity_id=identity_id, role_id=role_id, assigned_by=assigned_by)
        self._insert(self._user_roles, link)
        return link

    async def revoke_user_role(self, identity_id: str, role_id: str) -> bool:
        for link in self._user_roles.values():
            if link.identity_id == identity_id and link.role_id == role_id and not link.is_deleted:
                self._update(link, is_active=False, is_deleted=True)
                return True
        return False

    async def find_active_roles_for_identity(self, identity_id: str) -> List[Role]:
        roles: List[Role] = []
        for link in self._user_roles.values():
            if link.identity_id != identity_id or not link.is_active or link.is_deleted:
                continue
            role = self._roles.get(link.role_id)
            if role and role.is_active and not role.is_deleted:
                roles.append(role)
        return roles

    async def find_active_permissions_for_roles(self, role_ids: List[str]) -> List[PermissionRecord]:
        wanted = set(role_ids)
        permissions: List[PermissionRecord] = []
        for link in self._role_permissions.values():
            if link.role_id not in wanted or not link.is_active or link.is_deleted:
                continue
            permission = self._permissions.get(link.permission_id)
            if permission:
                permissions.append(permission)
        return permissions

    async def find_identities_with_role(self, role_id: str) -> List[str]:
        holders: List[str] = []
        for link in self._user_roles.values():
            if link.role_id == role_id and link.is_active and not link.is_deleted:
                if link.identity_id not in holders:
                    holders.append(link.identity_id)
        return holders

    # ══════════════════════════════════════════════════════════════════════════
    # TOKENS À USAGE UNIQUE
    # ══════════════════════════════════════════════════════════════════════════

    async def create_single_use_token(
        self, identity_id: str, token_hash: str, purpose: str, expires_at: datetime
    ) -> SingleUseTokenRecord:
        record = SingleUseTokenRecord(
            id=_new_id(),
            identity_id=identity_id,
            token_hash=token_hash,
            purpose=purpose,
            expires_at=expires_at,
            created_at=self._clock(),
        )
        self._insert(self._single_use_tokens, record)
        return record

    async def find_single_use_token(self, token_hash: str, purpose: str) -> Optional[SingleUseTokenRecord]:
        for record in self._single_use_tokens.values():
            if record.token_hash == token_hash and record.purpose == purpose:
                return record
        return None

    async def mark_single_use_token_used(self, token_id: str) -> bool:
        record = self._single_use_tokens.get(token_id)
        if record is None or record.is_used:
            return False
        self._update(record, is_used=True, used_at=self._clock())
        return True

    async def invalidate_single_use_tokens(self, identity_id: str, purpose: str) -> int:
        count = 0
        for record in self._single_use_tokens.values():
            if record.identity_id == identity_id and record.purpose == purpose and not record.is_used:
                self._update(record, is_used=True, used_at=self._clock())
                count += 1
        return count

    # ══════════════════════════════════════════════════════════════════════════
    # REFRESH TOKENS
    # ══════════════════════════════════════════════════════════════════════════

    async def create_refresh_record(self, identity_id: str, token_hash: str, expires_at: datetime) -> RefreshRecord:
        record = RefreshRecord(
            id=_new_id(),
            identity_id=identity_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=self._clock(),
        )
        self._insert(self._refresh_records, record)
        return record

    async def find_active_refresh_record(self, identity_id: str, token_hash: str) -> Optional[RefreshRecord]:
        for record in self._refresh_records.values():
            if record.identity_id == identity_id and record.token_hash == token_hash and record.is_active:
                return record
        return None

    async def delete_refresh_record(self, record_id: str) -> bool:
        return self._remove(self._refresh_records, record_id) is not None

    async def delete_refresh_records_by_hash(self, identity_id: str, token_hash: str) -> int:
        matching = [
            r.id for r in self._refresh_records.values()
            if r.identity_id == identity_id and r.token_hash == token_hash
        ]
        for record_id in matching:
            self._remove(self._refresh_records, record_id)
        return len(matching)

    async def deactivate_all_refresh_records(self, identity_id: str) -> int:
        count = 0
        for record in self._refresh_records.values():
            if record.identity_id == identity_id and record.is_active:
                self._update(record, is_active=False)
                count += 1
        return count

    async def list_refresh_records(self, identity_id: str) -> List[RefreshRecord]:
        return [r for r in self._refresh_records.values() if r.identity_id == identity_id]

    # ══════════════════════════════════════════════════════════════════════════
    # HELPERS
    # ══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _require(table: Dict[str, Any], record_id: str, label: str) -> Any:
        record = table.get(record_id)
        if record is None:
            raise RepositoryError(f"Unknown {label}: {record_id}")
        return record
