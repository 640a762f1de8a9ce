"""
TASKAUTH - Core Interfaces
Contrats et types partagés: configuration, validation, crypto, horloge.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Horloge par défaut (UTC, timezone-aware)."""
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════════════════════
# TYPES
# ══════════════════════════════════════════════════════════════════════════════


class PasswordPolicy(BaseModel):
    """Règles de robustesse des mots de passe."""

    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = True


class AuthSettings(BaseModel):
    """
    Configuration du noyau d'authentification.

    Les durées sont exprimées en secondes.
    """

    jwe_secret_key: str
    issuer: str = "task-management-system"
    audience: str = "task-management-api"
    access_token_ttl_seconds: int = 30 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 3600
    reset_token_ttl_seconds: int = 3600
    verification_token_ttl_seconds: int = 24 * 3600
    permission_cache_ttl_seconds: int = 5 * 60
    bcrypt_rounds: int = 12
    password_policy: PasswordPolicy = Field(default_factory=PasswordPolicy)
    default_role_name: str = "User"
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"


class ValidationSeverity(Enum):
    BLOCKING = "blocking"
    WARNING = "warning"
    INFO = "info"


class ConfigIssue(BaseModel):
    """Anomalie détectée dans la configuration."""

    rule_id: str
    message: str
    location: str
    value: Optional[str] = None
    severity: ValidationSeverity = ValidationSeverity.BLOCKING


class ValidationResult(BaseModel):
    """Résultat de validation d'une configuration."""

    valid: bool
    errors: list[ConfigIssue] = []
    warnings: list[ConfigIssue] = []
    checked_at: datetime


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════════════════════


class IConfigLoader(ABC):
    """Charge la configuration depuis fichier YAML + environnement."""

    @abstractmethod
    def load(self) -> AuthSettings:
        """
        Charge et parse la configuration.

        Raises:
            ConfigIntegrityError: Fichier absent, YAML invalide ou champ manquant
        """
        pass


class IConfigValidator(ABC):
    """Valide la configuration contre les règles de sécurité."""

    @abstractmethod
    def validate(self, settings: AuthSettings) -> ValidationResult:
        """
        Valide TOUTES les règles.
        Retourne TOUTES les anomalies (pas fail-fast).
        """
        pass

    @abstractmethod
    def validate_rule(self, rule_id: str, settings: AuthSettings) -> Optional[ConfigIssue]:
        """Valide UNE règle spécifique."""
        pass


class ICryptoProvider(ABC):
    """Primitives cryptographiques non adaptatives."""

    @abstractmethod
    def hash(self, data: bytes) -> str:
        """
        Calcule hash SHA-256 déterministe.

        Returns:
            Hash hex string (64 caractères)
        """
        pass

    @abstractmethod
    def random_token(self, num_bytes: int = 32) -> str:
        """Génère une valeur aléatoire haute entropie (hex)."""
        pass

    @abstractmethod
    def derive_key(self, secret: str, length: int = 32) -> bytes:
        """Dérive une clé symétrique de longueur fixe depuis un secret."""
        pass

    @abstractmethod
    def constant_time_equals(self, a: str, b: str) -> bool:
        """Comparaison en temps constant."""
        pass
