"""
Fixtures orchestrateur: identité "alice" inscrite.
"""

from urllib.parse import parse_qs, urlparse

import pytest

from taskauth.orchestrator import ContactInput, RegisterRequest


@pytest.fixture
def make_register_request():
    """Fabrique de RegisterRequest (alice par défaut)."""

    def build(**overrides) -> RegisterRequest:
        fields = dict(
            username="alice",
            password="Str0ng!Pass1",
            first_name="Alice",
            last_name="Smith",
            contacts=[ContactInput(contact="alice@example.com", contact_type="primary email")],
        )
        fields.update(overrides)
        return RegisterRequest(**fields)

    return build


@pytest.fixture
def link_token():
    """Extrait le token d'un lien envoyé par email."""

    def extract(link: str) -> str:
        return parse_qs(urlparse(link).query)["token"][0]

    return extract


@pytest.fixture
async def alice(orchestrator, make_register_request):
    """Alice inscrite (rôle User par défaut)."""
    result = await orchestrator.register(make_register_request())
    assert result.success, result.errors
    return result.user


@pytest.fixture
async def alice_session(orchestrator, alice):
    result = await orchestrator.login("alice@example.com", "Str0ng!Pass1", "primary email")
    assert result.success, result.errors
    return result
