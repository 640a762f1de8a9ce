"""
TASKAUTH - RBAC

Agrégation des permissions par rôles, cache par identité, vérification
avec élargissement "manage" et mutations des rôles.
"""

from .interfaces import (
    # Interfaces
    IPermissionChecker,
    IPermissionAggregator,
    IPermissionCache,
    # Data classes
    Action,
    Permission,
    PermissionLogic,
    RoleInfo,
    CachedPermissionSet,
)
from .permission_checker import PermissionChecker
from .permission_aggregator import PermissionAggregator
from .permission_cache import PermissionCache
from .role_admin import RoleAdmin

__all__ = [
    # Interfaces
    "IPermissionChecker",
    "IPermissionAggregator",
    "IPermissionCache",
    # Data classes
    "Action",
    "Permission",
    "PermissionLogic",
    "RoleInfo",
    "CachedPermissionSet",
    # Implementations
    "PermissionChecker",
    "PermissionAggregator",
    "PermissionCache",
    "RoleAdmin",
]
