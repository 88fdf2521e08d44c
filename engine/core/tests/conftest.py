"""
Core test configuration.

Every test gets its own storage, cache, in-memory remote store and
coordinator. Nothing is shared between tests.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from engine.core.cache import LocalCache, MemoryCacheStorage
from engine.core.remote import MemoryRemoteStore
from engine.core.sandbox import GuestContext
from engine.core.sync import SyncCoordinator


class TickClock:
    """Millisecond clock that advances by one on every read unless pinned."""

    def __init__(self, start: int = 0) -> None:
        self.now = start
        self.pinned = False

    def __call__(self) -> int:
        if not self.pinned:
            self.now += 1
        return self.now

    def set(self, value: int) -> None:
        self.now = value
        self.pinned = True


class RecordingGuest(GuestContext):
    """Guest context that keeps every message posted to it."""

    def __init__(self) -> None:
        self.received: list[dict[str, Any]] = []

    async def post_message(self, message: dict[str, Any]) -> None:
        self.received.append(message)

    def of_type(self, type_: str) -> list[dict[str, Any]]:
        return [m for m in self.received if m.get("type") == type_]


class GatedRemoteStore(MemoryRemoteStore):
    """MemoryRemoteStore whose updates wait until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.gate.set()

    async def update(self, ref, content):
        await self.gate.wait()
        await super().update(ref, content)


@pytest.fixture
def clock():
    return TickClock()


@pytest.fixture
def storage():
    return MemoryCacheStorage()


@pytest.fixture
def cache(storage, clock):
    return LocalCache(storage, clock=clock)


@pytest.fixture
def remote():
    return MemoryRemoteStore()


@pytest.fixture
def sync(remote, cache):
    return SyncCoordinator(remote, cache)


@pytest.fixture
def guest():
    return RecordingGuest()


@pytest.fixture
def make_guest():
    """Factory for extra guest contexts (e.g. an impostor)."""
    return RecordingGuest


@pytest.fixture
def gated_remote():
    return GatedRemoteStore()
