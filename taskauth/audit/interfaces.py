"""
TASKAUTH - Interfaces Audit

Contrats de la piste d'audit des opérations d'authentification et des
changements d'autorisation.

Règles:
    - Événement immuable une fois créé (dataclass frozen)
    - Hash SHA-256 sur représentation canonique (intégrité)
    - Métadonnées nettoyées et masquées avant stockage
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class AuditEventType(Enum):
    """Types d'événements d'audit."""
    # Authentification
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"

    # Mots de passe
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_SETUP = "password_setup"

    # Administration
    USER_CREATED = "user_created"
    ROLE_CHANGE = "role_change"
    PERMISSION_CHANGE = "permission_change"


@dataclass(frozen=True)
class AuditEvent:
    """
    Événement d'audit.

    Immutable pour garantir l'intégrité après calcul du hash.
    """
    event_id: str
    event_type: AuditEventType
    timestamp: datetime
    user_id: Optional[str]
    action: str
    resource_id: Optional[str]
    metadata: Dict[str, Any]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    hash_value: Optional[str] = None  # SHA-256 de l'événement


class IAuditEmitter(ABC):
    """
    Interface émetteur d'événements d'audit.

    Responsabilités:
        - Création événements audit
        - Hachage SHA-256
        - Masquage des données sensibles
    """

    @abstractmethod
    async def emit_event(
        self,
        event_type: AuditEventType,
        user_id: Optional[str],
        action: str,
        resource_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditEvent:
        """
        Émet un événement d'audit haché.

        Args:
            event_type: Type d'événement
            user_id: Identité concernée (None si inconnue, ex: échec login)
            action: Action effectuée
            resource_id: Ressource affectée (optionnel)
            metadata: Métadonnées additionnelles
            ip_address: Adresse IP source
            user_agent: User agent client

        Returns:
            Événement haché

        Raises:
            AuditEmitterError: Erreur création
        """
        pass

    @abstractmethod
    def compute_event_hash(self, event: AuditEvent) -> str:
        """
        Calcule hash SHA-256 d'un événement (hors hash_value).

        Returns:
            Hash SHA-256 hexadécimal
        """
        pass

    @abstractmethod
    def verify_event_hash(self, event: AuditEvent) -> bool:
        """True si hash_value correspond au contenu de l'événement."""
        pass

    @abstractmethod
    def get_events(
        self,
        event_type: Optional[AuditEventType] = None,
        user_id: Optional[str] = None,
    ) -> List[AuditEvent]:
        """Événements émis (ordre chronologique), filtrables."""
        pass
