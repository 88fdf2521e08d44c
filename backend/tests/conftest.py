"""
Pytest configuration and fixtures for tinyapp host tests.

Each test gets its own application wired to an in-memory remote store and an
in-memory cache. No network, no cache file.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.auth import TokenStore
from backend.main import create_app
from engine.core.cache import LocalCache, MemoryCacheStorage
from engine.core.remote import MemoryRemoteStore


@pytest.fixture
def remote():
    return MemoryRemoteStore()


@pytest.fixture
def token_store():
    return TokenStore()


@pytest.fixture
def app(remote, token_store):
    return create_app(remote=remote, cache=LocalCache(MemoryCacheStorage()), token_store=token_store)


@pytest.fixture
def client(app):
    """Return a synchronous TestClient for HTTP and WS testing."""
    return TestClient(app)


@pytest.fixture
def created_app(client):
    """An app created through the API."""
    response = client.post("/api/apps", json={"name": "Counter"})
    assert response.status_code == 201
    return response.json()
