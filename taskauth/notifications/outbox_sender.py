"""
TASKAUTH - Outbox Email Sender

Implémentation mémoire de IEmailSender: les emails sont conservés dans
une boîte d'envoi (tests / développement).
"""

from typing import List, Optional
from urllib.parse import urlencode

from ..logging import StructuredLogger
from .interfaces import IEmailSender, OutboundEmail


class OutboxEmailSender(IEmailSender):
    """
    Boîte d'envoi en mémoire.

    Example:
        sender = OutboxEmailSender("https://app.example.com")
        await sender.send_password_reset("alice@example.com", token, user_id)
        assert sender.outbox[0].kind == "password_reset"
    """

    def __init__(self, frontend_url: str = "http://localhost:3000", logger: Optional[StructuredLogger] = None):
        self.frontend_url = frontend_url.rstrip("/")
        self._logger = logger or StructuredLogger("taskauth.notifications")
        self.outbox: List[OutboundEmail] = []

    async def send_password_reset(self, to: str, token: str, user_id: str, name: Optional[str] = None) -> None:
        self._deliver(
            OutboundEmail(
                kind="password_reset",
                to=to,
                subject="Reset your password",
                link=self._link("reset-password", token, user_id),
                user_id=user_id,
                recipient_name=name,
            )
        )

    async def send_setup_password(self, to: str, token: str, user_id: str, name: Optional[str] = None) -> None:
        self._deliver(
            OutboundEmail(
                kind="setup_password",
                to=to,
                subject="Set up your password",
                link=self._link("setup-password", token, user_id),
                user_id=user_id,
                recipient_name=name,
            )
        )

    def last_for(self, to: str) -> Optional[OutboundEmail]:
        for email in reversed(self.outbox):
            if email.to == to:
                return email
        return None

    def _link(self, path: str, token: str, user_id: str) -> str:
        return f"{self.frontend_url}/{path}?{urlencode({'token': token, 'userId': user_id})}"

    def _deliver(self, email: OutboundEmail) -> None:
        self.outbox.append(email)
        self._logger.info("email_queued", kind=email.kind, user_id=email.user_id)
