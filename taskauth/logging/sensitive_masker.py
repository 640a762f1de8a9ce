"""
TASKAUTH - Logging - Sensitive Masker

Masquage automatique des données sensibles (mots de passe, tokens bruts,
hash de tokens) avant toute écriture de log ou d'audit.
"""

from typing import Any, Dict, Iterable, List, Optional

from .interfaces import ISensitiveMasker


DEFAULT_ALLOWED_KEYS = ("token_type", "token_reason", "token_purpose")


class SensitiveMasker(ISensitiveMasker):
    """
    Masquage récursif par nom de clé (sous-chaîne, insensible à la casse).

    Les valeurs ne sont jamais inspectées: seul le nom de la clé décide.
    Les clés de `allowed_keys` (correspondance exacte) restent lisibles,
    ce qui permet de journaliser "token_reason" sans exposer un token.

    Example:
        masker = SensitiveMasker()
        masker.mask({"refresh_token": "eyJ...", "token_reason": "expired"})
        # {"refresh_token": "***MASKED***", "token_reason": "expired"}
    """

    def __init__(
        self,
        additional_patterns: Optional[Iterable[str]] = None,
        allowed_keys: Optional[Iterable[str]] = None,
    ) -> None:
        self._patterns: List[str] = []
        for pattern in [*self.SENSITIVE_PATTERNS, *(additional_patterns or [])]:
            if pattern:
                self._register(pattern)
        self._allowed = frozenset(k.lower() for k in (allowed_keys or DEFAULT_ALLOWED_KEYS))

    @property
    def patterns(self) -> List[str]:
        return list(self._patterns)

    def mask(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Copie masquée; l'entrée n'est jamais modifiée."""
        if not isinstance(data, dict):
            return data
        return {
            key: self.MASK_VALUE if self.is_sensitive_key(key) else self._scrub(value)
            for key, value in data.items()
        }

    def is_sensitive_key(self, key: str) -> bool:
        if not key:
            return False
        lowered = str(key).lower()
        return lowered not in self._allowed and any(p in lowered for p in self._patterns)

    def add_pattern(self, pattern: str) -> None:
        """
        Raises:
            ValueError: Si pattern vide
        """
        if not pattern or not pattern.strip():
            raise ValueError("Pattern cannot be empty")
        self._register(pattern)

    def _register(self, pattern: str) -> None:
        normalized = pattern.strip().lower()
        if normalized not in self._patterns:
            self._patterns.append(normalized)

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self.mask(value)
        if isinstance(value, (list, tuple)):
            return [self._scrub(item) for item in value]
        return value
