"""
TASKAUTH - Taxonomie des erreurs

Erreurs "attendues" de l'authentification. Elles sont levées par les
composants, capturées par l'orchestrateur et converties en AuthResult.
Toute autre exception (base indisponible, bug) est une erreur
d'infrastructure et se propage.
"""

from enum import Enum
from typing import List, Optional


class ErrorKind(Enum):
    """Catégorie d'erreur exposée à la couche transport."""

    VALIDATION = "validation"
    CREDENTIAL = "credential"
    TOKEN = "token"
    CONFLICT = "conflict"
    STATE = "state"
    NOT_FOUND = "not_found"


class TokenErrorReason(Enum):
    """Motif interne d'échec token (journalisé, jamais exposé)."""

    INVALID = "invalid"
    EXPIRED = "expired"
    USED = "used"
    WRONG_TYPE = "wrong_type"


class AuthError(Exception):
    """
    Erreur métier d'authentification.

    Attributes:
        message: Message court destiné à l'appelant
        errors: Détails lisibles (liste)
        kind: Catégorie (ErrorKind)
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.message = message
        self.errors = list(errors) if errors else [message]
        super().__init__(message)

    @property
    def public_message(self) -> str:
        return self.message


class ValidationError(AuthError):
    """Entrée invalide (format, robustesse mot de passe)."""

    kind = ErrorKind.VALIDATION


class CredentialError(AuthError):
    """Identifiants incorrects. Message volontairement uniforme."""

    kind = ErrorKind.CREDENTIAL

    def __init__(self, message: str = "Invalid credentials", errors: Optional[List[str]] = None):
        super().__init__(message, errors or ["Contact or password is incorrect"])


class TokenError(AuthError):
    """
    Token invalide, expiré, déjà utilisé ou du mauvais type.

    Le motif reste disponible pour les logs; le message public est
    identique quel que soit le motif.
    """

    kind = ErrorKind.TOKEN
    PUBLIC_MESSAGE = "Invalid or expired token"

    def __init__(self, reason: TokenErrorReason = TokenErrorReason.INVALID, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail or reason.value
        super().__init__(self.PUBLIC_MESSAGE, ["The token is invalid or has expired"])

    @property
    def public_message(self) -> str:
        return self.PUBLIC_MESSAGE


class ConflictError(AuthError):
    """Doublon (username, contact, nom de rôle)."""

    kind = ErrorKind.CONFLICT


class StateError(AuthError):
    """État incompatible (compte inactif, rôle encore attribué)."""

    kind = ErrorKind.STATE


class NotFoundError(AuthError):
    """Ressource introuvable."""

    kind = ErrorKind.NOT_FOUND
