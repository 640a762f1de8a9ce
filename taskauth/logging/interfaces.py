"""
TASKAUTH - Logging Interfaces

Règles:
    - Une entrée = une ligne JSON
    - Champs obligatoires: timestamp, level, correlation_id, message
    - Timestamp ISO 8601 UTC
    - Mots de passe, tokens et hash JAMAIS en clair
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LogLevel(Enum):
    """DEBUG < INFO < WARN < ERROR < CRITICAL"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def get_priority(cls, level: "LogLevel") -> int:
        return list(cls).index(level)

    @classmethod
    def from_name(cls, name: str) -> "LogLevel":
        """Accepte "info", "WARNING", "Error"..."""
        normalized = (name or "").strip().upper()
        return cls("WARN" if normalized == "WARNING" else normalized)


@dataclass
class LogEntry:
    timestamp: str
    level: LogLevel
    correlation_id: str
    message: str
    extra: Dict[str, Any] = field(default_factory=dict)
    logger_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "correlation_id": self.correlation_id,
            "message": self.message,
        }
        if self.logger_name:
            payload["logger"] = self.logger_name
        if self.extra:
            payload["extra"] = self.extra
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


@dataclass
class LogConfig:
    """
    Attributes:
        min_level: Niveau minimum émis
        include_extra: Conserver les champs additionnels
        mask_sensitive: Masquer les clés sensibles (désactiver uniquement en local)
        default_correlation_id: Corrélation appliquée faute de mieux
        max_entries: Taille du tampon de capture
    """

    min_level: LogLevel = LogLevel.INFO
    include_extra: bool = True
    mask_sensitive: bool = True
    default_correlation_id: Optional[str] = None
    max_entries: int = 10_000


class IStructuredLogger(ABC):
    """Logger structuré consommé par tous les composants."""

    @abstractmethod
    def log(
        self,
        level: LogLevel,
        message: str,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> Optional[LogEntry]:
        pass

    @abstractmethod
    def debug(self, message: str, **extra: Any) -> Optional[LogEntry]:
        pass

    @abstractmethod
    def info(self, message: str, **extra: Any) -> Optional[LogEntry]:
        pass

    @abstractmethod
    def warn(self, message: str, **extra: Any) -> Optional[LogEntry]:
        pass

    @abstractmethod
    def error(self, message: str, **extra: Any) -> Optional[LogEntry]:
        pass

    @abstractmethod
    def critical(self, message: str, **extra: Any) -> Optional[LogEntry]:
        pass

    @abstractmethod
    def get_entries(self) -> List[LogEntry]:
        """Entrées capturées."""
        pass


class ISensitiveMasker(ABC):
    """Masquage des données d'authentification avant écriture."""

    SENSITIVE_PATTERNS: List[str] = [
        "password",
        "passwd",
        "pwd",
        "token",
        "secret",
        "hash",
        "key",
        "credential",
        "authorization",
        "bearer",
        "jwt",
        "jwe",
        "cookie",
        "otp",
        "verification_code",
    ]

    MASK_VALUE: str = "***MASKED***"

    @abstractmethod
    def mask(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Copie de `data` où les valeurs des clés sensibles sont remplacées."""
        pass

    @abstractmethod
    def is_sensitive_key(self, key: str) -> bool:
        pass

    @abstractmethod
    def add_pattern(self, pattern: str) -> None:
        pass
