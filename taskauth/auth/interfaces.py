"""
TASKAUTH - Interfaces Auth

Contrats pour les mots de passe, les tokens de session chiffrés (JWE)
et les tokens à usage unique.
Toute implémentation DOIT respecter ces interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class TokenType(Enum):
    """Type de token de session. Access et refresh ne sont pas substituables."""

    ACCESS = "access"
    REFRESH = "refresh"


class TokenPurpose(Enum):
    """Usage d'un token à usage unique (même mécanisme, TTL différent)."""

    PASSWORD_RESET = "password_reset"
    VERIFICATION = "verification"


@dataclass(frozen=True)
class TokenClaims:
    """
    Claims extraits et validés d'un token de session.

    Attributes:
        sub: Identifiant de l'identité
        type: access | refresh
        iss: Émetteur
        aud: Audience
        iat: Date émission
        exp: Date expiration
        jti: Identifiant unique du token
        username: Nom d'utilisateur (access uniquement)
        roles: Noms des rôles (access uniquement)
    """

    sub: str
    type: TokenType
    iss: str
    aud: str
    iat: datetime
    exp: datetime
    jti: str
    username: Optional[str] = None
    roles: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.sub:
            raise ValueError("sub is required")
        if self.exp <= self.iat:
            raise ValueError("exp must be after iat")

    @property
    def identity_id(self) -> str:
        return self.sub


@dataclass
class PasswordStrength:
    """Résultat de validation de robustesse (une erreur par règle violée)."""

    valid: bool
    errors: List[str] = field(default_factory=list)


class ICredentialStore(ABC):
    """
    Interface hachage / vérification des mots de passe.

    Le hachage adaptatif est exécuté hors de la boucle d'événements.
    """

    @abstractmethod
    async def hash(self, password: str) -> str:
        """Hash adaptatif salé (irréversible)."""
        pass

    @abstractmethod
    async def verify(self, password: str, password_hash: str) -> bool:
        """
        Vérifie un mot de passe via la fonction de l'algorithme.

        Returns:
            False si mot de passe incorrect ou hash malformé
        """
        pass

    @abstractmethod
    def validate_strength(self, password: str) -> PasswordStrength:
        """Contrôle longueur minimale et composition."""
        pass


class ITokenCodec(ABC):
    """
    Interface émission / vérification des tokens de session.

    Tous les échecs de vérification lèvent TokenError (message public
    unique); le motif reste disponible en interne pour les logs.
    """

    @abstractmethod
    def issue_access(self, identity_id: str, username: str, roles: List[str]) -> str:
        pass

    @abstractmethod
    def issue_refresh(self, identity_id: str) -> str:
        pass

    @abstractmethod
    def verify(self, token: str, expected_type: TokenType) -> TokenClaims:
        """
        Raises:
            TokenError: Déchiffrement, tag, expiration, iss/aud ou type invalide
        """
        pass

    @abstractmethod
    def refresh_expiry(self) -> datetime:
        """Expiration d'un refresh token émis maintenant (enregistrement serveur)."""
        pass

    @abstractmethod
    def hash_opaque_token(self, token: str) -> str:
        """Hash déterministe (pas le hash adaptatif des mots de passe)."""
        pass


class ISingleUseTokenLedger(ABC):
    """Interface tokens à usage unique (reset, vérification)."""

    @abstractmethod
    async def issue(self, identity_id: str, purpose: TokenPurpose, ttl_seconds: Optional[int] = None) -> str:
        """
        Émet un token brut; seul son hash est stocké.
        Invalide les tokens non utilisés de même usage pour l'identité.
        """
        pass

    @abstractmethod
    async def consume(self, identity_id: str, raw_token: str, purpose: TokenPurpose) -> None:
        """
        Consomme le token (transition unused → used exactement une fois).

        Raises:
            TokenError: INVALID, USED ou EXPIRED
        """
        pass
