"""
TASKAUTH - Logging - Structured Logger

Logger JSON structuré avec champs obligatoires et masquage.

Chaque entrée porte timestamp (ISO 8601 UTC, millisecondes), level,
correlation_id et message. Les données additionnelles passent par le
SensitiveMasker avant d'être conservées ou écrites.
"""

import uuid
from collections import deque
from typing import Any, Callable, Deque, List, Optional

from ..core.interfaces import Clock, utc_now
from .interfaces import (
    ISensitiveMasker,
    IStructuredLogger,
    LogConfig,
    LogEntry,
    LogLevel,
)
from .sensitive_masker import SensitiveMasker


OutputHandler = Callable[[str], None]


class MissingRequiredFieldError(Exception):
    """Champ obligatoire manquant."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Required field missing: {field_name}")


class StructuredLogger(IStructuredLogger):
    """
    Logger JSON structuré.

    Sans output_handler, les entrées sont seulement capturées (tampon
    borné par max_entries), ce qui suffit aux tests. Les loggers enfants
    partagent la sortie mais pas le tampon.

    Example:
        logger = StructuredLogger("taskauth", output_handler=print)
        codec_logger = logger.child("auth.token_codec")
        codec_logger.warn("token_rejected", token_reason="expired")
    """

    def __init__(
        self,
        name: str,
        config: Optional[LogConfig] = None,
        masker: Optional[ISensitiveMasker] = None,
        output_handler: Optional[OutputHandler] = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Raises:
            ValueError: Si name vide
        """
        if not (name or "").strip():
            raise ValueError("Logger name cannot be empty")

        self._name = name.strip()
        self._config = config or LogConfig()
        self._masker = masker or SensitiveMasker()
        self._output = output_handler
        self._clock = clock
        self._buffer: Deque[LogEntry] = deque(maxlen=self._config.max_entries)
        self._correlation_id = self._config.default_correlation_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> LogConfig:
        return self._config

    def set_default_correlation(self, correlation_id: str) -> None:
        self._correlation_id = correlation_id

    def child(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(
            f"{self._name}.{suffix}",
            config=self._config,
            masker=self._masker,
            output_handler=self._output,
            clock=self._clock,
        )

    def log(
        self,
        level: LogLevel,
        message: str,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> Optional[LogEntry]:
        """
        Returns:
            L'entrée créée, None si le niveau est sous min_level

        Raises:
            MissingRequiredFieldError: Si message vide
        """
        if LogLevel.get_priority(level) < LogLevel.get_priority(self._config.min_level):
            return None
        if not message:
            raise MissingRequiredFieldError("message")

        entry = LogEntry(
            timestamp=self._timestamp(),
            level=level,
            correlation_id=correlation_id or self._correlation_id or str(uuid.uuid4()),
            message=message,
            extra=self._prepare_extra(extra),
            logger_name=self._name,
        )

        self._buffer.append(entry)
        if self._output is not None:
            self._output(entry.to_json())
        return entry

    # ── Raccourcis par niveau ────────────────────────────────────────────────

    def debug(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, message, **extra)

    def warn(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, message, **extra)

    def error(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.ERROR, message, **extra)

    def critical(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.CRITICAL, message, **extra)

    # ── Tampon de capture ────────────────────────────────────────────────────

    def get_entries(self) -> List[LogEntry]:
        return list(self._buffer)

    def get_entries_by_level(self, level: LogLevel) -> List[LogEntry]:
        return [e for e in self._buffer if e.level == level]

    def get_entries_by_message(self, message: str) -> List[LogEntry]:
        return [e for e in self._buffer if e.message == message]

    def clear_entries(self) -> None:
        self._buffer.clear()

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _prepare_extra(self, extra: dict) -> dict:
        if not extra or not self._config.include_extra:
            return {}
        return self._masker.mask(extra) if self._config.mask_sensitive else dict(extra)

    def _timestamp(self) -> str:
        # 2026-03-04T14:30:00.123Z
        now = self._clock()
        return f"{now:%Y-%m-%dT%H:%M:%S}.{now.microsecond // 1000:03d}Z"
