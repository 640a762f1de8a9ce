"""
TASKAUTH - Audit

Piste d'audit des opérations d'authentification et des changements
de rôles / permissions.
"""
from .interfaces import (
    IAuditEmitter,
    AuditEvent,
    AuditEventType,
)
from .audit_emitter import AuditEmitter, AuditEmitterError

__all__ = [
    # Interfaces
    "IAuditEmitter",
    # Data classes
    "AuditEvent",
    "AuditEventType",
    # Implementations
    "AuditEmitter",
    # Exceptions
    "AuditEmitterError",
]
