"""
TASKAUTH - Single-Use Token Ledger

Tokens à usage unique (réinitialisation de mot de passe, vérification /
configuration initiale). Seul le hash SHA-256 du token brut est stocké.

Règles:
    - Au plus un token non utilisé par (identité, usage): une nouvelle
      émission invalide les précédents
    - Transition unused → used exactement une fois, puis inerte
    - Validité = non expiré ET non utilisé (expiration absolue)
"""

from datetime import timedelta
from typing import Optional

from ..core.crypto_provider import CryptoProvider
from ..core.errors import TokenError, TokenErrorReason
from ..core.interfaces import Clock, ICryptoProvider, utc_now
from ..logging import StructuredLogger
from ..storage.interfaces import IAuthRepository
from .interfaces import ISingleUseTokenLedger, TokenPurpose


class SingleUseTokenLedger(ISingleUseTokenLedger):
    """
    Registre des tokens à usage unique.

    consume() n'ouvre pas sa propre transaction: le marquage "used" est
    écrit dans la transaction de l'appelant, avec l'effet qu'il protège.

    Example:
        ledger = SingleUseTokenLedger(repository)
        raw = await ledger.issue(identity_id, TokenPurpose.PASSWORD_RESET)
        await ledger.consume(identity_id, raw, TokenPurpose.PASSWORD_RESET)
    """

    def __init__(
        self,
        repository: IAuthRepository,
        crypto_provider: Optional[ICryptoProvider] = None,
        clock: Clock = utc_now,
        reset_ttl_seconds: int = 3600,
        verification_ttl_seconds: int = 24 * 3600,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Args:
            repository: Dépôt de persistance
            crypto_provider: Hash SHA-256 + génération aléatoire
            clock: Horloge injectable
            reset_ttl_seconds: TTL reset (défaut: 1h)
            verification_ttl_seconds: TTL vérification (défaut: 24h)
        """
        self._repository = repository
        self._crypto = crypto_provider or CryptoProvider()
        self._clock = clock
        self._ttl_seconds = {
            TokenPurpose.PASSWORD_RESET: reset_ttl_seconds,
            TokenPurpose.VERIFICATION: verification_ttl_seconds,
        }
        self._logger = logger or StructuredLogger("taskauth.auth.token_ledger", clock=clock)

    def default_ttl(self, purpose: TokenPurpose) -> int:
        return self._ttl_seconds[purpose]

    async def issue(self, identity_id: str, purpose: TokenPurpose, ttl_seconds: Optional[int] = None) -> str:
        """
        Émet un token brut (32 octets aléatoires, hex).

        Raises:
            ValueError: identity_id vide ou TTL non positif
        """
        if not identity_id:
            raise ValueError("identity_id is required")

        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl(purpose)
        if ttl <= 0:
            raise ValueError(f"TTL must be positive, got {ttl}")

        raw_token = self._crypto.random_token(32)
        expires_at = self._clock() + timedelta(seconds=ttl)

        async with self._repository.transaction():
            invalidated = await self._repository.invalidate_single_use_tokens(identity_id, purpose.value)
            await self._repository.create_single_use_token(
                identity_id,
                self._hash(raw_token),
                purpose.value,
                expires_at,
            )

        self._logger.info(
            "single_use_token_issued",
            identity_id=identity_id,
            token_purpose=purpose.value,
            invalidated_previous=invalidated,
        )
        return raw_token

    async def consume(self, identity_id: str, raw_token: str, purpose: TokenPurpose) -> None:
        try:
            await self._consume(identity_id, raw_token, purpose)
        except TokenError as exc:
            self._logger.warn(
                "single_use_token_rejected",
                identity_id=identity_id,
                token_purpose=purpose.value,
                token_reason=exc.reason.value,
            )
            raise

    async def _consume(self, identity_id: str, raw_token: str, purpose: TokenPurpose) -> None:
        if not raw_token or not identity_id:
            raise TokenError(TokenErrorReason.INVALID, "missing token or identity")

        record = await self._repository.find_single_use_token(self._hash(raw_token), purpose.value)

        if record is None or record.identity_id != identity_id:
            raise TokenError(TokenErrorReason.INVALID, "unknown token")

        if record.is_used:
            raise TokenError(TokenErrorReason.USED, "token already used")

        if self._clock() >= record.expires_at:
            raise TokenError(TokenErrorReason.EXPIRED, "token expired")

        # Transition strictement unique: un consommateur concurrent perd ici
        if not await self._repository.mark_single_use_token_used(record.id):
            raise TokenError(TokenErrorReason.USED, "token already used")

    def _hash(self, raw_token: str) -> str:
        return self._crypto.hash(raw_token.encode("utf-8"))
