"""
TASKAUTH - Notifications

Envoi des emails de réinitialisation et de configuration du mot de passe.
"""

from .interfaces import IEmailSender, OutboundEmail, EmailDeliveryError
from .outbox_sender import OutboxEmailSender

__all__ = [
    # Interfaces
    "IEmailSender",
    # Data classes
    "OutboundEmail",
    # Implementations
    "OutboxEmailSender",
    # Exceptions
    "EmailDeliveryError",
]
