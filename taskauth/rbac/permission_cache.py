"""
TASKAUTH - Permission Cache Implementation

Cache en mémoire du processus, par identité, devant l'agrégateur.

Règles:
    - Hit si now < expires_at; une entrée expirée est traitée comme absente
    - invalidate() retire immédiatement l'entrée: la lecture suivante
      interroge l'agrégateur, même dans la fenêtre TTL
    - Une résolution en vol pendant laquelle la clé a été invalidée est
      renvoyée à son appelant mais n'est pas stockée (compteur de génération)
"""

from datetime import timedelta
from typing import Any, Dict, Iterable, Optional, Tuple

from ..core.interfaces import Clock, utc_now
from ..logging import StructuredLogger
from .interfaces import CachedPermissionSet, IPermissionAggregator, IPermissionCache


class PermissionCache(IPermissionCache):
    """
    Cache de permissions avec TTL et horloge injectés.

    Note:
        Pas de verrou: le modèle d'exécution asyncio sérialise les
        mutations entre deux points de suspension.

    Example:
        cache = PermissionCache(aggregator, ttl_seconds=300)
        cached = await cache.get(identity_id)
        cache.invalidate(identity_id)
    """

    DEFAULT_TTL_SECONDS: int = 5 * 60

    def __init__(
        self,
        aggregator: IPermissionAggregator,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = utc_now,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Args:
            aggregator: Source de vérité des permissions
            ttl_seconds: Durée de vie d'une entrée (défaut: 5 minutes)
            clock: Horloge injectable

        Raises:
            ValueError: TTL non positif
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        self._aggregator = aggregator
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._logger = logger or StructuredLogger("taskauth.rbac.cache", clock=clock)

        self._entries: Dict[str, CachedPermissionSet] = {}
        # Compteurs tenus uniquement pour les clés en cours de résolution
        self._in_flight: Dict[str, int] = {}
        self._generations: Dict[str, int] = {}
        self._global_generation = 0

        self._hits = 0
        self._misses = 0
        self._invalidations = 0
        self._discarded = 0

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    async def get(self, identity_id: str) -> CachedPermissionSet:
        """
        Retourne les permissions de l'identité (cache ou agrégateur).

        Raises:
            ValueError: identity_id vide
        """
        if not identity_id:
            raise ValueError("identity_id is required")

        entry = self.peek(identity_id)
        if entry is not None:
            self._hits += 1
            return entry

        self._misses += 1
        generation = self._begin_fetch(identity_id)
        try:
            roles, permissions = await self._aggregator.resolve(identity_id)
            stale = self._generation(identity_id) != generation
        finally:
            self._end_fetch(identity_id)

        resolved_at = self._clock()
        entry = CachedPermissionSet(
            identity_id=identity_id,
            permissions=tuple(permissions),
            roles=tuple(roles),
            cached_at=resolved_at,
            expires_at=resolved_at + self._ttl,
        )

        if not stale:
            self._entries[identity_id] = entry
        else:
            # Invalidation survenue pendant la résolution
            self._discarded += 1
            self._logger.debug("permission_cache_store_skipped", identity_id=identity_id)

        return entry

    def peek(self, identity_id: str) -> Optional[CachedPermissionSet]:
        """Entrée valide sans appel à l'agrégateur (None si absente/expirée)."""
        entry = self._entries.get(identity_id)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            del self._entries[identity_id]
            return None
        return entry

    def invalidate(self, identity_id: str) -> bool:
        if identity_id in self._in_flight:
            self._generations[identity_id] += 1
        self._invalidations += 1
        return self._entries.pop(identity_id, None) is not None

    def invalidate_many(self, identity_ids: Iterable[str]) -> int:
        removed = 0
        for identity_id in set(identity_ids):
            if self.invalidate(identity_id):
                removed += 1
        return removed

    def invalidate_all(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        self._global_generation += 1
        self._invalidations += 1
        self._logger.info("permission_cache_cleared", removed=removed)
        return removed

    def cleanup_expired(self) -> int:
        """Purge explicite des entrées expirées."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if not entry.is_fresh(now)]
        for identity_id in expired:
            del self._entries[identity_id]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "invalidations": self._invalidations,
            "discarded_results": self._discarded,
            "in_flight": len(self._in_flight),
            "ttl_seconds": self.ttl_seconds,
        }

    def _generation(self, identity_id: str) -> Tuple[int, int]:
        return self._global_generation, self._generations.get(identity_id, 0)

    def _begin_fetch(self, identity_id: str) -> Tuple[int, int]:
        self._in_flight[identity_id] = self._in_flight.get(identity_id, 0) + 1
        self._generations.setdefault(identity_id, 0)
        return self._generation(identity_id)

    def _end_fetch(self, identity_id: str) -> None:
        remaining = self._in_flight[identity_id] - 1
        if remaining:
            self._in_flight[identity_id] = remaining
        else:
            del self._in_flight[identity_id]
            del self._generations[identity_id]
