"""
TASKAUTH - Crypto Provider Implementation
Hachage déterministe des tokens opaques et dérivation de clé JWE.
"""

import hashlib
import hmac
import secrets

from cryptography.hazmat.primitives import hashes

from .interfaces import ICryptoProvider


class KeyDerivationError(Exception):
    """Secret trop court pour produire une clé sûre."""

    pass


class CryptoProvider(ICryptoProvider):
    """
    Primitives non adaptatives.

    Le hash SHA-256 est déterministe: un token brut doit pouvoir être
    re-haché à l'identique lors de la recherche (contrairement aux mots
    de passe, salés à chaque appel).
    """

    def hash(self, data: bytes) -> str:
        """
        Calcule hash SHA-256.

        Returns:
            Hash hex string (64 caractères)
        """
        return hashlib.sha256(data).hexdigest()

    def random_token(self, num_bytes: int = 32) -> str:
        """Valeur aléatoire hex (2 * num_bytes caractères)."""
        return secrets.token_hex(num_bytes)

    def derive_key(self, secret: str, length: int = 32) -> bytes:
        """
        Dérive une clé de `length` octets.

        - secret de longueur exacte: utilisé tel quel
        - secret plus long: SHA-256 (length == 32)
        - secret plus court: refusé

        Raises:
            KeyDerivationError: Secret plus court que `length` octets
        """
        if length > hashes.SHA256.digest_size:
            raise ValueError(f"Unsupported key length: {length}")

        encoded = (secret or "").encode("utf-8")

        if len(encoded) < length:
            raise KeyDerivationError(
                f"Secret must be at least {length} bytes, got {len(encoded)}"
            )

        if len(encoded) == length:
            return encoded

        hasher = hashes.Hash(hashes.SHA256())
        hasher.update(encoded)
        digest = hasher.finalize()
        return digest[:length]

    def constant_time_equals(self, a: str, b: str) -> bool:
        return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
