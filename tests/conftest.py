"""
TASKAUTH - Pytest Configuration
Fixtures partagées pour tous les tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from taskauth.core import AuthSettings
from taskauth.logging import StructuredLogger
from taskauth.notifications import OutboxEmailSender
from taskauth.orchestrator import AuthOrchestrator
from taskauth.storage import InMemoryAuthRepository, seed_defaults


TEST_SECRET = "test-secret-key-with-at-least-32-bytes!!"


class FakeClock:
    """Horloge contrôlable (appelable comme utc_now)."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def silent_logger(clock) -> StructuredLogger:
    """Logger de test: entrées capturées, sortie ignorée."""
    return StructuredLogger("taskauth.tests", output_handler=lambda line: None, clock=clock)


@pytest.fixture
def settings() -> AuthSettings:
    """Configuration de test (bcrypt rapide)."""
    return AuthSettings(jwe_secret_key=TEST_SECRET, bcrypt_rounds=4)


@pytest.fixture
def repository(clock) -> InMemoryAuthRepository:
    return InMemoryAuthRepository(clock=clock)


@pytest.fixture
async def seeded_repository(repository):
    """Dépôt avec types de contact, rôles et permissions par défaut."""
    await seed_defaults(repository)
    return repository


@pytest.fixture
def email_sender(silent_logger) -> OutboxEmailSender:
    return OutboxEmailSender("https://app.example.com", logger=silent_logger)


@pytest.fixture
async def orchestrator(settings, seeded_repository, email_sender, clock, silent_logger) -> AuthOrchestrator:
    return AuthOrchestrator.from_settings(
        settings,
        seeded_repository,
        email_sender=email_sender,
        clock=clock,
        logger=silent_logger,
    )
