"""
TASKAUTH - Credential Store Implementation

Hachage bcrypt des mots de passe et contrôle de robustesse.

Règles:
    - Hash adaptatif, coût configurable, sel aléatoire à chaque appel
    - Calcul exécuté dans un thread (jamais bloquant pour la boucle)
    - Robustesse vérifiée avant tout hachage
"""

import asyncio
import re
from typing import List, Optional

import bcrypt

from ..core.interfaces import PasswordPolicy
from .interfaces import ICredentialStore, PasswordStrength


# bcrypt ignore (ou refuse) les octets au-delà de 72
BCRYPT_MAX_PASSWORD_BYTES = 72

SPECIAL_CHARACTER_PATTERN = re.compile(r"[^A-Za-z0-9]")


class CredentialStoreError(Exception):
    """Erreur de hachage (entrée inutilisable)."""

    pass


class CredentialStore(ICredentialStore):
    """
    Gestion des mots de passe via bcrypt.

    Example:
        store = CredentialStore(rounds=12)
        password_hash = await store.hash("Str0ng!Pass1")
        assert await store.verify("Str0ng!Pass1", password_hash)
    """

    def __init__(self, rounds: int = 12, policy: Optional[PasswordPolicy] = None):
        """
        Args:
            rounds: Facteur de coût bcrypt (4..31)
            policy: Règles de robustesse (défaut: 8 caractères, 4 classes)
        """
        if rounds < 4 or rounds > 31:
            raise ValueError(f"bcrypt rounds must be within 4..31, got {rounds}")
        self.rounds = rounds
        self.policy = policy or PasswordPolicy()

    async def hash(self, password: str) -> str:
        """
        Raises:
            CredentialStoreError: Mot de passe vide ou > 72 octets
        """
        if not password:
            raise CredentialStoreError("Password cannot be empty")

        encoded = password.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
            raise CredentialStoreError(f"Password exceeds {BCRYPT_MAX_PASSWORD_BYTES} bytes")

        return await asyncio.to_thread(self._hash_sync, encoded)

    def _hash_sync(self, encoded: bytes) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(encoded, salt).decode("utf-8")

    async def verify(self, password: str, password_hash: str) -> bool:
        if not password or not password_hash:
            return False
        return await asyncio.to_thread(self._verify_sync, password, password_hash)

    @staticmethod
    def _verify_sync(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Hash malformé ou mot de passe hors limites
            return False

    def validate_strength(self, password: str) -> PasswordStrength:
        """Une erreur par règle violée."""
        password = password or ""
        errors: List[str] = []

        if len(password) < self.policy.min_length:
            errors.append(f"Password must be at least {self.policy.min_length} characters long")

        if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            errors.append(f"Password must not exceed {BCRYPT_MAX_PASSWORD_BYTES} bytes")

        if self.policy.require_uppercase and not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")

        if self.policy.require_lowercase and not re.search(r"[a-z]", password):
            errors.append("Password must contain at least one lowercase letter")

        if self.policy.require_digit and not re.search(r"\d", password):
            errors.append("Password must contain at least one number")

        if self.policy.require_special and not SPECIAL_CHARACTER_PATTERN.search(password):
            errors.append("Password must contain at least one special character")

        return PasswordStrength(valid=not errors, errors=errors)
