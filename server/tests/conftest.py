"""
Pytest configuration and fixtures for catalog server tests.

The server runs on the in-memory store with dummy data seeded, so no
database is needed.
"""

from __future__ import annotations

import os

# Set test environment variables before importing config
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ["STORE_BACKEND"] = "memory"
os.environ["SEED_DUMMY_DATA"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from server.auth import create_jwt  # noqa: E402
from server.config import settings  # noqa: E402
from server.main import app  # noqa: E402
from server.seed import DEMO_PASSWORD, DEMO_USERNAME  # noqa: E402


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """PBKDF2 at production strength makes every login slow."""
    monkeypatch.setattr(settings, "PASSWORD_HASH_ITERATIONS", 1_000)


@pytest.fixture
def client(monkeypatch):
    """A started app (lifespan run) with the demo catalog and user seeded."""
    monkeypatch.setattr(settings, "SEED_DUMMY_DATA", True)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def bare_client():
    """A started app with an empty store."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def credentials():
    return {"username": DEMO_USERNAME, "password": DEMO_PASSWORD}


@pytest.fixture
def token(client, credentials):
    response = client.post("/auth/login", json=credentials)
    assert response.status_code == 200
    return response.json()["token"]


@pytest.fixture
def stranger_token():
    """Validly signed, but for a user the store has never seen."""
    return create_jwt("mallory", subject="u-unknown")
