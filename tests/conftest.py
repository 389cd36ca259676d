from decimal import Decimal

import pytest

from spendguard.client import SpendGuard
from spendguard.core.config import Config
from spendguard.core.types import GuardRequest
from spendguard.storage.memory import InMemoryStorage


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def config() -> Config:
    """Demo defaults, independent of the SPENDGUARD_* environment."""
    return Config(
        daily_limit=Decimal("1.0"),
        max_price_per_call=Decimal("0.5"),
        allowed_providers=frozenset({"email"}),
        allowed_actions=frozenset({"send"}),
        allowed_tasks=frozenset({"welcome_flow"}),
    )


@pytest.fixture
def guard(config, storage) -> SpendGuard:
    """SpendGuard wired to the mock email provider and in-memory storage."""
    return SpendGuard(config=config, storage=storage, configure_log=False)


@pytest.fixture
def email_payload() -> dict:
    return {"to": "user@example.com", "subject": "Welcome", "body": "Hello there"}


@pytest.fixture
def email_request(email_payload) -> GuardRequest:
    return GuardRequest(
        provider="email",
        action="send",
        task="welcome_flow",
        payload=email_payload,
    )
