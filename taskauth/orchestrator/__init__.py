"""
TASKAUTH - Orchestrator

Opérations d'authentification exposées à la couche transport.
"""

from .interfaces import (
    # Interfaces
    IAuthOrchestrator,
    # Data classes
    AuthContext,
    AuthResult,
    ContactInput,
    ContactSnapshot,
    CreateUserRequest,
    IdentitySnapshot,
    RegisterRequest,
)
from .flow import AuthFlow, FlowState, Step
from .auth_orchestrator import AuthOrchestrator, FORGOT_PASSWORD_MESSAGE

__all__ = [
    # Interfaces
    "IAuthOrchestrator",
    # Data classes
    "AuthContext",
    "AuthResult",
    "ContactInput",
    "ContactSnapshot",
    "CreateUserRequest",
    "IdentitySnapshot",
    "RegisterRequest",
    # Flows
    "AuthFlow",
    "FlowState",
    "Step",
    # Implementations
    "AuthOrchestrator",
    # Constants
    "FORGOT_PASSWORD_MESSAGE",
]
