"""
TASKAUTH - Core

Configuration, validation, primitives crypto et taxonomie des erreurs.
"""

from .interfaces import (
    AuthSettings,
    PasswordPolicy,
    ConfigIssue,
    ValidationResult,
    ValidationSeverity,
    IConfigLoader,
    IConfigValidator,
    ICryptoProvider,
    Clock,
    utc_now,
)
from .errors import (
    ErrorKind,
    TokenErrorReason,
    AuthError,
    ValidationError,
    CredentialError,
    TokenError,
    ConflictError,
    StateError,
    NotFoundError,
)
from .config_loader import ConfigLoader, ConfigIntegrityError
from .config_validator import ConfigValidator
from .crypto_provider import CryptoProvider, KeyDerivationError

__all__ = [
    # Types
    "AuthSettings",
    "PasswordPolicy",
    "ConfigIssue",
    "ValidationResult",
    "ValidationSeverity",
    "Clock",
    "utc_now",
    # Interfaces
    "IConfigLoader",
    "IConfigValidator",
    "ICryptoProvider",
    # Implementations
    "ConfigLoader",
    "ConfigValidator",
    "CryptoProvider",
    # Exceptions
    "ErrorKind",
    "TokenErrorReason",
    "AuthError",
    "ValidationError",
    "CredentialError",
    "TokenError",
    "ConflictError",
    "StateError",
    "NotFoundError",
    "ConfigIntegrityError",
    "KeyDerivationError",
]
