"""
tinyapp core — local-first runtime for tiny sandboxed apps.

Four components:
  cache      — LocalCache: key-value cache with LRU on app bundles
  sync       — SyncCoordinator: cache-or-fetch over a RemoteStore
  sandbox    — SandboxHost: ready → init → update-session → session-saved
  freshness  — format_sync_time: "just now", "5m ago", ...

The remote store is an injected interface (remote.RemoteStore); the HTTP
implementation lives in backend.services.drive.
"""

from engine.core.cache import CacheKind, JsonFileCacheStorage, LocalCache, MemoryCacheStorage
from engine.core.freshness import format_sync_time
from engine.core.remote import AuthenticationMissing, MemoryRemoteStore, RemoteStore, RemoteStoreError
from engine.core.sandbox import GuestContext, HostState, SandboxHost
from engine.core.sync import SyncCoordinator

__all__ = [
    "CacheKind",
    "LocalCache",
    "MemoryCacheStorage",
    "JsonFileCacheStorage",
    "RemoteStore",
    "MemoryRemoteStore",
    "RemoteStoreError",
    "AuthenticationMissing",
    "SyncCoordinator",
    "SandboxHost",
    "HostState",
    "GuestContext",
    "format_sync_time",
]
