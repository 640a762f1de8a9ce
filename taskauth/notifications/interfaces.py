"""
TASKAUTH - Interfaces Notifications

Collaborateur externe de livraison des emails (reset, configuration du
mot de passe). Le noyau n'attend aucune garantie de livraison.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..core.interfaces import utc_now


@dataclass(frozen=True)
class OutboundEmail:
    """Email préparé pour livraison."""

    kind: str
    to: str
    subject: str
    link: str
    user_id: str
    recipient_name: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)


class EmailDeliveryError(Exception):
    """Échec de livraison (transport indisponible, adresse refusée)."""

    pass


class IEmailSender(ABC):
    """Interface d'envoi des emails d'authentification."""

    @abstractmethod
    async def send_password_reset(self, to: str, token: str, user_id: str, name: Optional[str] = None) -> None:
        """
        Raises:
            EmailDeliveryError: Échec de livraison
        """
        pass

    @abstractmethod
    async def send_setup_password(self, to: str, token: str, user_id: str, name: Optional[str] = None) -> None:
        """
        Raises:
            EmailDeliveryError: Échec de livraison
        """
        pass
