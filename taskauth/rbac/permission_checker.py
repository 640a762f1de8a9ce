"""
TASKAUTH - Permission Checker Implementation

Vérification des permissions avec élargissement "manage".
"""

from typing import Dict, FrozenSet, Iterable, Set, Union

from .interfaces import Action, IPermissionChecker, Permission


class PermissionChecker(IPermissionChecker):
    """
    Vérificateur de permissions.

    Example:
        checker = PermissionChecker()
        checker.has(["tasks:manage"], "tasks:delete")  # True
        checker.has_all(["tasks:read"], [])  # True
    """

    def has(self, granted: Iterable[str], required: Union[str, Permission]) -> bool:
        return self._has_permission(self.index(granted), required)

    def has_any(self, granted: Iterable[str], required: Iterable[Union[str, Permission]]) -> bool:
        required = list(required)
        if not required:
            return True
        index = self.index(granted)
        return any(self._has_permission(index, r) for r in required)

    def has_all(self, granted: Iterable[str], required: Iterable[Union[str, Permission]]) -> bool:
        index = self.index(granted)
        return all(self._has_permission(index, r) for r in required)

    @staticmethod
    def index(granted: Iterable[str]) -> Dict[str, FrozenSet[Action]]:
        """
        Indexe les permissions détenues par ressource.

        Les chaînes non reconnues sont ignorées.
        """
        by_resource: Dict[str, Set[Action]] = {}
        for value in granted or ():
            permission = Permission.try_parse(value)
            if permission is not None:
                by_resource.setdefault(permission.resource, set()).add(permission.action)
        return {resource: frozenset(actions) for resource, actions in by_resource.items()}

    @staticmethod
    def _has_permission(index: Dict[str, FrozenSet[Action]], required: Union[str, Permission]) -> bool:
        permission = Permission.try_parse(required)
        if permission is None:
            return False

        actions = index.get(permission.resource)
        if not actions:
            return False

        # Correspondance exacte ou wildcard "manage" sur la ressource
        return permission.action in actions or Action.MANAGE in actions
