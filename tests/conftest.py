"""
Pytest configuration and fixtures.

Everything runs against the in-memory goal store and the dev payment
gateway / proof verifier; no network or Supabase project is needed.
"""

import pytest

from stakeit.config import get_settings
from stakeit.services.lifecycle import activate_goal, create_goal
from stakeit.services.notifier import Notifier
from stakeit.services.payments import DevPaymentGateway
from stakeit.services.proofs import DevProofVerifier
from stakeit.store.memory import InMemoryGoalStore
from tests.factories import goal_request


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Fresh settings for every test, isolated from any local .env."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("PAYMENT_SECRET_KEY", "")
    monkeypatch.setenv("PROOF_VERIFIER_URL", "")
    monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def store():
    return InMemoryGoalStore()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def gateway():
    return DevPaymentGateway()


@pytest.fixture
def verifier():
    return DevProofVerifier()


@pytest.fixture
def make_active_goal(store, gateway):
    """Factory: create a goal, pay for it and return the active goal."""

    async def _make(**overrides):
        created = await create_goal(store, gateway, goal_request(**overrides))
        return await activate_goal(store, created.id)

    return _make
