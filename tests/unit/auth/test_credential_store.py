"""
Tests unitaires CredentialStore

Hash bcrypt (sel aléatoire), vérification, robustesse.
"""

import pytest

from taskauth.auth import CredentialStore, CredentialStoreError, ICredentialStore
from taskauth.core import PasswordPolicy


STRONG = "Str0ng!Pass1"


@pytest.fixture
def store():
    """bcrypt coût minimal pour la vitesse des tests."""
    return CredentialStore(rounds=4)


class TestHashing:
    def test_implements_interface(self, store):
        assert isinstance(store, ICredentialStore)

    @pytest.mark.asyncio
    async def test_hash_then_verify(self, store):
        password_hash = await store.hash(STRONG)

        assert password_hash.startswith("$2")
        assert STRONG not in password_hash
        assert await store.verify(STRONG, password_hash) is True
        assert await store.verify("Wr0ng!Pass1", password_hash) is False

    @pytest.mark.asyncio
    async def test_salted(self, store):
        """Deux hash du même mot de passe diffèrent."""
        assert await store.hash(STRONG) != await store.hash(STRONG)

    @pytest.mark.asyncio
    async def test_cost_factor_applied(self, store):
        assert (await store.hash(STRONG)).split("$")[2] == "04"

    @pytest.mark.asyncio
    async def test_verify_malformed_hash_false(self, store):
        assert await store.verify(STRONG, "not-a-bcrypt-hash") is False

    @pytest.mark.asyncio
    async def test_verify_empty_inputs_false(self, store):
        assert await store.verify("", "$2b$04$abc") is False
        assert await store.verify(STRONG, "") is False

    @pytest.mark.asyncio
    async def test_hash_empty_raises(self, store):
        with pytest.raises(CredentialStoreError):
            await store.hash("")

    @pytest.mark.asyncio
    async def test_hash_over_72_bytes_raises(self, store):
        with pytest.raises(CredentialStoreError):
            await store.hash("Aa1!" + "x" * 80)

    @pytest.mark.parametrize("rounds", [3, 32])
    def test_invalid_rounds(self, rounds):
        with pytest.raises(ValueError):
            CredentialStore(rounds=rounds)


class TestStrength:
    def test_strong_password_valid(self, store):
        result = store.validate_strength(STRONG)
        assert result.valid is True
        assert result.errors == []

    def test_one_error_per_rule(self, store):
        result = store.validate_strength("abc")

        assert result.valid is False
        assert result.errors == [
            "Password must be at least 8 characters long",
            "Password must contain at least one uppercase letter",
            "Password must contain at least one number",
            "Password must contain at least one special character",
        ]

    @pytest.mark.parametrize(
        "password,message",
        [
            ("str0ng!pass1", "Password must contain at least one uppercase letter"),
            ("STR0NG!PASS1", "Password must contain at least one lowercase letter"),
            ("Strong!Pass", "Password must contain at least one number"),
            ("Str0ngPass1", "Password must contain at least one special character"),
        ],
    )
    def test_single_rule_violation(self, store, password, message):
        assert store.validate_strength(password).errors == [message]

    def test_too_long(self, store):
        result = store.validate_strength("Aa1!" + "x" * 80)
        assert "Password must not exceed 72 bytes" in result.errors

    def test_custom_policy(self):
        store = CredentialStore(rounds=4, policy=PasswordPolicy(min_length=12, require_special=False))

        assert store.validate_strength("Short1Aa").errors == ["Password must be at least 12 characters long"]
        assert store.validate_strength("LongEnough123").valid is True

    def test_none_treated_as_empty(self, store):
        assert store.validate_strength(None).valid is False  # type: ignore[arg-type]
