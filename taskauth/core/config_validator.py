"""
TASKAUTH - Config Validator Implementation
Valide la configuration contre les règles de sécurité.
"""

from typing import Callable, Dict, Optional

from ..logging.interfaces import LogLevel

from .interfaces import (
    AuthSettings,
    Clock,
    ConfigIssue,
    IConfigValidator,
    ValidationResult,
    ValidationSeverity,
    utc_now,
)


MIN_JWE_SECRET_BYTES = 32


class ConfigValidator(IConfigValidator):
    """Validation de AuthSettings (toutes les règles, pas fail-fast)."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._validators: Dict[str, Callable[[AuthSettings], Optional[ConfigIssue]]] = {
            "jwe_secret_length": self._validate_secret_length,
            "token_ttl_order": self._validate_token_ttl_order,
            "single_use_ttl_order": self._validate_single_use_ttl_order,
            "bcrypt_rounds": self._validate_bcrypt_rounds,
            "cache_ttl": self._validate_cache_ttl,
            "password_min_length": self._validate_password_min_length,
            "log_level": self._validate_log_level,
        }

    @property
    def rule_ids(self) -> list:
        return list(self._validators)

    def validate(self, settings: AuthSettings) -> ValidationResult:
        errors = []
        warnings = []

        for rule_id in self._validators:
            issue = self.validate_rule(rule_id, settings)
            if issue:
                if issue.severity == ValidationSeverity.BLOCKING:
                    errors.append(issue)
                elif issue.severity == ValidationSeverity.WARNING:
                    warnings.append(issue)

        return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings, checked_at=self._clock())

    def validate_rule(self, rule_id: str, settings: AuthSettings) -> Optional[ConfigIssue]:
        if rule_id not in self._validators:
            return ConfigIssue(
                rule_id=rule_id,
                message=f"Règle inconnue: {rule_id}",
                location="config",
                severity=ValidationSeverity.BLOCKING,
            )

        return self._validators[rule_id](settings)

    def _validate_secret_length(self, settings: AuthSettings) -> Optional[ConfigIssue]:
        """Secret JWE >= 32 octets (clé A256GCM)."""
        length = len(settings.jwe_secret_key.encode("utf-8"))
        if length < MIN_JWE_SECRET_BYTES:
            return ConfigIssue(
                rule_id="jwe_secret_length",
                message=f"jwe_secret_key doit faire au moins {MIN_JWE_SECRET_BYTES} octets",
                location="jwe_secret_key",
                value=str(length),
            )
        return None

    def _validate_token_ttl_order(self, settings: AuthSettings) -> Optional[ConfigIssue]:
        """Access token plus court que refresh token."""
        if settings.access_token_ttl_seconds <= 0 or settings.refresh_token_ttl_seconds <= 0:
            return ConfigIssue(
                rule_id="token_ttl_order",
                message="Les durées de vie des tokens doivent être positives",
                location="access_token_ttl_seconds",
            )
        if settings.access_token_ttl_seconds >= settings.refresh_token_ttl_seconds:
            return ConfigIssue(
                rule_id="token_ttl_order",
                message="access_token_ttl_seconds doit être inférieur à refresh_token_ttl_seconds",
                location="access_token_ttl_seconds",
                value=str(settings.access_token_ttl_seconds),
            )
        return None

    def _validate_single_use_ttl_order(self, settings: AuthSettings) -> Optional[ConfigIssue]:
        """Token de reset plus court que token de vérification (avertissement)."""
        if settings.reset_token_ttl_seconds >= settings.verification_token_ttl_seconds:
            return ConfigIssue(
                rule_id="single_use_ttl_order",
                message="reset_token_ttl_seconds devrait être inférieur à verification_token_ttl_seconds",
                location="reset_token_ttl_seconds",
                value=str(settings.reset_token_ttl_seconds),
                severity=ValidationSeverity.WARNING,
            )
        return None

    def _validate_bcrypt_rounds(self, settings: AuthSettings) -> Optional[ConfigIssue]:
        """Coût bcrypt dans la plage supportée (4..31)."""
        if not 4 <= settings.bcrypt_rounds <= 31:
            return ConfigIssue(
                rule_id="bcrypt_rounds",
                message="bcrypt_rounds doit être compris entre 4 et 31",
                location="bcrypt_rounds",
                value=str(settings.bcrypt_rounds),
            )
        return None

    def _validate_cache_ttl(self, settings: AuthSettings) -> Optional[ConfigIssue]:
        """Cache permissions plus long que l'access token (avertissement)."""
        if settings.permission_cache_ttl_seconds > settings.access_token_ttl_seconds:
            return ConfigIssue(
                rule_id="cache_ttl",
                message="permission_cache_ttl_seconds dépasse la durée de vie de l'access token",
                location="permission_cache_ttl_seconds",
                value=str(settings.permission_cache_ttl_seconds),
                severity=ValidationSeverity.WARNING,
            )
        return None

    def _validate_password_min_length(self, settings: AuthSettings) -> Optional[ConfigIssue]:
        if settings.password_policy.min_length < 8:
            return ConfigIssue(
                rule_id="password_min_length",
                message="password_policy.min_length doit être au moins 8",
                location="password_policy.min_length",
                value=str(settings.password_policy.min_length),
            )
        return None

    def _validate_log_level(self, settings: AuthSettings) -> Optional[ConfigIssue]:
        try:
            LogLevel.from_name(settings.log_level)
        except ValueError:
            return ConfigIssue(
                rule_id="log_level",
                message="log_level inconnu (DEBUG, INFO, WARN, ERROR, CRITICAL)",
                location="log_level",
                value=settings.log_level,
            )
        return None
