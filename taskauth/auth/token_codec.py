"""
TASKAUTH - Token Codec

Émission et vérification des tokens de session chiffrés (JWE compact,
alg=dir, enc=A256GCM): confidentialité et intégrité en une primitive.

Règles:
    - Clé dérivée du secret: 32 octets exacts utilisés tels quels,
      plus long → SHA-256, plus court → refus à la construction
    - Access et refresh distingués par le claim "type", non substituables
    - Tout échec de vérification → TokenError au message public unique,
      motif interne journalisé (WARN)
"""

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import jwe
from jose.constants import ALGORITHMS
from jose.exceptions import JWEError

from ..core.crypto_provider import CryptoProvider, KeyDerivationError
from ..core.errors import TokenError, TokenErrorReason
from ..core.interfaces import AuthSettings, Clock, ICryptoProvider, utc_now
from ..logging import StructuredLogger
from .interfaces import ITokenCodec, TokenClaims, TokenType


KEY_LENGTH_BYTES = 32

REQUIRED_CLAIMS = ("sub", "type", "iss", "aud", "iat", "exp", "jti")


class TokenCodecKeyError(Exception):
    """Secret JWE absent ou trop court: le service ne doit pas démarrer."""

    def __init__(self, message: str, provided_bytes: int = 0):
        self.provided_bytes = provided_bytes
        super().__init__(message)


class TokenCodec(ITokenCodec):
    """
    Codec JWE des tokens de session.

    Example:
        codec = TokenCodec(secret, clock=utc_now)
        access = codec.issue_access("u-1", "alice", ["User"])
        claims = codec.verify(access, TokenType.ACCESS)
    """

    def __init__(
        self,
        secret: str,
        issuer: str = "task-management-system",
        audience: str = "task-management-api",
        access_ttl_seconds: int = 30 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 3600,
        clock: Clock = utc_now,
        crypto_provider: Optional[ICryptoProvider] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Raises:
            TokenCodecKeyError: Secret plus court que 32 octets
            ValueError: TTL non positif
        """
        self._crypto = crypto_provider or CryptoProvider()

        provided = len((secret or "").encode("utf-8"))
        try:
            self._key = self._crypto.derive_key(secret or "", KEY_LENGTH_BYTES)
        except KeyDerivationError as exc:
            raise TokenCodecKeyError(
                f"JWE secret must be at least {KEY_LENGTH_BYTES} bytes, got {provided}",
                provided_bytes=provided,
            ) from exc

        if access_ttl_seconds <= 0 or refresh_ttl_seconds <= 0:
            raise ValueError("Token TTLs must be positive")

        self.issuer = issuer
        self.audience = audience
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock
        self._logger = logger or StructuredLogger("taskauth.auth.token_codec", clock=clock)

    @classmethod
    def from_settings(
        cls,
        settings: AuthSettings,
        clock: Clock = utc_now,
        crypto_provider: Optional[ICryptoProvider] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> "TokenCodec":
        return cls(
            settings.jwe_secret_key,
            issuer=settings.issuer,
            audience=settings.audience,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            clock=clock,
            crypto_provider=crypto_provider,
            logger=logger,
        )

    # ══════════════════════════════════════════════════════════════════════════
    # ÉMISSION
    # ══════════════════════════════════════════════════════════════════════════

    def issue_access(self, identity_id: str, username: str, roles: List[str]) -> str:
        return self._issue(
            identity_id,
            TokenType.ACCESS,
            self.access_ttl_seconds,
            {"username": username, "roles": list(roles or [])},
        )

    def issue_refresh(self, identity_id: str) -> str:
        return self._issue(identity_id, TokenType.REFRESH, self.refresh_ttl_seconds, {})

    def refresh_expiry(self) -> datetime:
        """Expiration d'un refresh token émis maintenant (pour le registre)."""
        return self._clock() + timedelta(seconds=self.refresh_ttl_seconds)

    def _issue(self, identity_id: str, token_type: TokenType, ttl_seconds: int, extra: Dict[str, Any]) -> str:
        if not identity_id:
            raise ValueError("identity_id is required")

        issued_at = int(self._clock().timestamp())
        payload: Dict[str, Any] = {
            "sub": identity_id,
            "type": token_type.value,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": issued_at,
            "exp": issued_at + ttl_seconds,
            "jti": uuid.uuid4().hex,
        }
        payload.update(extra)

        token = jwe.encrypt(
            json.dumps(payload, separators=(",", ":")),
            self._key,
            encryption=ALGORITHMS.A256GCM,
            algorithm=ALGORITHMS.DIR,
        )
        return token.decode("ascii") if isinstance(token, bytes) else token

    # ══════════════════════════════════════════════════════════════════════════
    # VÉRIFICATION
    # ══════════════════════════════════════════════════════════════════════════

    def verify(self, token: str, expected_type: TokenType) -> TokenClaims:
        try:
            return self._verify(token, expected_type)
        except TokenError as exc:
            self._logger.warn(
                "token_rejected",
                token_reason=exc.reason.value,
                expected_type=expected_type.value,
                detail=exc.detail,
            )
            raise

    def _verify(self, token: str, expected_type: TokenType) -> TokenClaims:
        if not token or not isinstance(token, str):
            raise TokenError(TokenErrorReason.INVALID, "empty token")

        try:
            plaintext = jwe.decrypt(token, self._key)
        except (JWEError, ValueError) as exc:
            raise TokenError(TokenErrorReason.INVALID, f"decryption failed: {type(exc).__name__}")

        if plaintext is None:
            raise TokenError(TokenErrorReason.INVALID, "decryption failed")

        try:
            payload = json.loads(plaintext)
        except ValueError:
            raise TokenError(TokenErrorReason.INVALID, "payload is not JSON")

        if not isinstance(payload, dict):
            raise TokenError(TokenErrorReason.INVALID, "payload is not an object")

        missing = [claim for claim in REQUIRED_CLAIMS if claim not in payload]
        if missing:
            raise TokenError(TokenErrorReason.INVALID, f"missing claims: {', '.join(missing)}")

        if payload["iss"] != self.issuer:
            raise TokenError(TokenErrorReason.INVALID, "issuer mismatch")
        if payload["aud"] != self.audience:
            raise TokenError(TokenErrorReason.INVALID, "audience mismatch")

        try:
            iat = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            exp = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            raise TokenError(TokenErrorReason.INVALID, "malformed timestamps")

        if self._clock() >= exp:
            raise TokenError(TokenErrorReason.EXPIRED, "token expired")

        try:
            token_type = TokenType(payload["type"])
        except ValueError:
            raise TokenError(TokenErrorReason.INVALID, "unknown token type")

        if token_type != expected_type:
            raise TokenError(
                TokenErrorReason.WRONG_TYPE,
                f"expected {expected_type.value}, got {token_type.value}",
            )

        roles = payload.get("roles") or []
        if not isinstance(roles, list):
            raise TokenError(TokenErrorReason.INVALID, "malformed roles claim")

        try:
            return TokenClaims(
                sub=str(payload["sub"]),
                type=token_type,
                iss=payload["iss"],
                aud=payload["aud"],
                iat=iat,
                exp=exp,
                jti=str(payload["jti"]),
                username=payload.get("username"),
                roles=[str(r) for r in roles],
            )
        except ValueError as exc:
            raise TokenError(TokenErrorReason.INVALID, str(exc))

    def hash_opaque_token(self, token: str) -> str:
        return self._crypto.hash((token or "").encode("utf-8"))
