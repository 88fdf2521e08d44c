"""Tests for the token store and the credential routes."""

from __future__ import annotations

from fastapi.testclient import TestClient

from backend.auth import TokenStore
from backend.main import create_app
from engine.core.cache import LocalCache, MemoryCacheStorage
from engine.core.remote import MemoryRemoteStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTokenStore:
    def test_empty_store_has_no_token(self):
        store = TokenStore(expiry_buffer=300)

        assert store.get_token() is None
        assert not store.is_signed_in

    def test_token_valid_until_buffer(self):
        clock = FakeClock()
        store = TokenStore(expiry_buffer=300, clock=clock)
        store.set_token("tok", 3600)

        clock.now += 3300
        assert store.get_token() == "tok"

        clock.now += 1
        assert store.get_token() is None

    def test_expired_token_is_forgotten(self):
        clock = FakeClock()
        store = TokenStore(expiry_buffer=300, clock=clock)
        store.set_token("tok", 3600)

        clock.now += 4000
        store.get_token()

        assert store.expires_at is None
        clock.now = 1000.0
        assert store.get_token() is None

    def test_token_shorter_than_buffer_is_never_valid(self):
        store = TokenStore(expiry_buffer=300, clock=FakeClock())
        store.set_token("tok", 120)

        assert not store.is_signed_in

    def test_clear(self):
        store = TokenStore(expiry_buffer=300, clock=FakeClock())
        store.set_token("tok", 3600)

        store.clear()

        assert store.get_token() is None

    def test_default_buffer_is_five_minutes(self):
        clock = FakeClock()
        store = TokenStore(clock=clock)
        store.set_token("tok", 600)

        clock.now += 299
        assert store.is_signed_in
        clock.now += 2
        assert not store.is_signed_in


class TestAuthRoutes:
    def test_sign_in_status_sign_out(self, client):
        assert client.get("/api/auth/status").json() == {"signed_in": False, "expires_at": None}

        response = client.post("/api/auth/token", json={"access_token": "ya29.token", "expires_in": 3599})
        assert response.status_code == 200
        assert response.json()["signed_in"] is True

        status = client.get("/api/auth/status").json()
        assert status["signed_in"] is True
        assert status["expires_at"] is not None

        assert client.delete("/api/auth/token").status_code == 204
        assert client.get("/api/auth/status").json()["signed_in"] is False

    def test_token_payload_is_validated(self, client):
        assert client.post("/api/auth/token", json={"access_token": "", "expires_in": 3600}).status_code == 422
        assert client.post("/api/auth/token", json={"access_token": "t", "expires_in": 0}).status_code == 422

    def test_remote_store_reads_stored_token(self):
        token_store = TokenStore()
        remote = MemoryRemoteStore(token_provider=token_store.get_token)
        client = TestClient(create_app(remote=remote, cache=LocalCache(MemoryCacheStorage()), token_store=token_store))

        assert client.get("/api/apps").status_code == 401

        client.post("/api/auth/token", json={"access_token": "ya29.token", "expires_in": 3600})

        assert client.get("/api/apps").status_code == 200
