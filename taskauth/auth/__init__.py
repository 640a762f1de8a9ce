"""
TASKAUTH - Authentication

Mots de passe (bcrypt), tokens de session chiffrés (JWE) et tokens à
usage unique (reset / vérification).
"""

from .interfaces import (
    ICredentialStore,
    ITokenCodec,
    ISingleUseTokenLedger,
    TokenClaims,
    TokenType,
    TokenPurpose,
    PasswordStrength,
)
from .credential_store import CredentialStore, CredentialStoreError
from .token_codec import TokenCodec, TokenCodecKeyError
from .token_ledger import SingleUseTokenLedger
from . import contacts

__all__ = [
    # Interfaces
    "ICredentialStore",
    "ITokenCodec",
    "ISingleUseTokenLedger",
    # Data classes
    "TokenClaims",
    "TokenType",
    "TokenPurpose",
    "PasswordStrength",
    # Implementations
    "CredentialStore",
    "TokenCodec",
    "SingleUseTokenLedger",
    "contacts",
    # Exceptions
    "CredentialStoreError",
    "TokenCodecKeyError",
]
