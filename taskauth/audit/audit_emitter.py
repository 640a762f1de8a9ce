"""
TASKAUTH - Audit Emitter Implementation

Émetteur d'événements d'audit haché (SHA-256), journalisés et conservés
en mémoire pour inspection.
"""

import json
import uuid
from collections import deque
from dataclasses import asdict, replace
from typing import Any, Deque, Dict, List, Optional

from ..core.crypto_provider import CryptoProvider
from ..core.interfaces import Clock, ICryptoProvider, utc_now
from ..logging import SensitiveMasker, StructuredLogger
from .interfaces import AuditEvent, AuditEventType, IAuditEmitter


MAX_KEY_LENGTH = 100
MAX_STRING_LENGTH = 1000
MAX_LIST_ITEMS = 50
MAX_DEPTH = 2

_SCALARS = (str, int, float, bool)


class AuditEmitterError(Exception):
    """Erreur émission événement audit."""

    pass


class AuditEmitter(IAuditEmitter):
    """
    Émetteur d'événements d'audit.

    Les métadonnées sont bornées puis masquées AVANT le calcul du hash:
    le hash couvre exactement ce qui est conservé.

    Example:
        emitter = AuditEmitter()
        event = await emitter.emit_event(
            AuditEventType.AUTH_SUCCESS,
            "user-123",
            "login",
            metadata={"contact_type": "primary email"},
        )
    """

    MAX_EVENTS: int = 10_000

    def __init__(
        self,
        crypto_provider: Optional[ICryptoProvider] = None,
        logger: Optional[StructuredLogger] = None,
        masker: Optional[SensitiveMasker] = None,
        clock: Clock = utc_now,
    ):
        self.crypto_provider = crypto_provider or CryptoProvider()
        self._logger = logger or StructuredLogger("taskauth.audit", clock=clock)
        self._masker = masker or SensitiveMasker()
        self._clock = clock
        self._events: Deque[AuditEvent] = deque(maxlen=self.MAX_EVENTS)

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
        if not action:
            raise AuditEmitterError("action est obligatoire")
        if not isinstance(event_type, AuditEventType):
            raise AuditEmitterError(f"Type événement invalide: {event_type}")

        unsigned = AuditEvent(
            event_id=str(uuid.uuid4()),
            event_type=event_type,
            timestamp=self._clock(),
            user_id=user_id,
            action=action,
            resource_id=resource_id,
            metadata=self._masker.mask(self._bounded(metadata or {}, MAX_DEPTH)),
            ip_address=ip_address,
            user_agent=user_agent,
        )

        try:
            event = replace(unsigned, hash_value=self.compute_event_hash(unsigned))
        except (TypeError, ValueError) as e:
            raise AuditEmitterError(f"Erreur création événement audit: {e}")

        self._events.append(event)
        self._logger.info(
            "audit_event",
            event_id=event.event_id,
            event_type=event.event_type.value,
            action=event.action,
            user_id=event.user_id,
            resource_id=event.resource_id,
            metadata=event.metadata,
            digest=f"{event.hash_value[:16]}...",
        )
        return event

    def compute_event_hash(self, event: AuditEvent) -> str:
        return self.crypto_provider.hash(self._canonical(event).encode("utf-8"))

    def verify_event_hash(self, event: AuditEvent) -> bool:
        if not event.hash_value:
            return False
        return self.crypto_provider.constant_time_equals(self.compute_event_hash(event), event.hash_value)

    def get_events(
        self,
        event_type: Optional[AuditEventType] = None,
        user_id: Optional[str] = None,
    ) -> List[AuditEvent]:
        return [
            e for e in self._events
            if (event_type is None or e.event_type == event_type)
            and (user_id is None or e.user_id == user_id)
        ]

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _bounded(self, data: Dict[str, Any], depth: int) -> Dict[str, Any]:
        """Garde les scalaires, les listes de scalaires et les dicts imbriqués (profondeur bornée)."""
        bounded: Dict[str, Any] = {}

        for key, value in data.items():
            if not isinstance(key, str) or len(key) > MAX_KEY_LENGTH:
                continue

            if isinstance(value, str):
                bounded[key] = value[:MAX_STRING_LENGTH]
            elif value is None or isinstance(value, _SCALARS):
                bounded[key] = value
            elif isinstance(value, dict) and depth > 0:
                bounded[key] = self._bounded(value, depth - 1)
            elif isinstance(value, (list, tuple)):
                bounded[key] = [item for item in list(value)[:MAX_LIST_ITEMS] if isinstance(item, _SCALARS)]

        return bounded

    @staticmethod
    def _canonical(event: AuditEvent) -> str:
        # Tous les champs sauf hash_value, clés triées
        payload = asdict(event)
        payload.pop("hash_value")
        payload["event_type"] = event.event_type.value
        payload["timestamp"] = event.timestamp.isoformat()
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))
