"""
tinyapp core — Local Cache

A bounded key → entry mapping persisted in durable local storage.

Kinds:
  app           — app bundles, bounded to N entries, LRU by cached_at
  apps          — the app list
  session       — session documents, keyed by their own id
  sessions      — an app's session list
  folderId      — folder id lookups (root folder, sessions folders)
  fileId        — file id lookups, keyed by "<parent_id>_<name>"
  sessionOwner  — session id → app id, for cascading invalidation

Recency is set only when a value is written (fetched or saved), never when it
is read. Every mutation is written through to storage synchronously. The
cache is a performance optimization: storage failures are logged and
swallowed, corrupt payloads read as empty.
"""

from __future__ import annotations

import copy
import heapq
import itertools
import json
import logging
import os
import tempfile
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from engine.core.types import CacheEntry, now_ms

logger = logging.getLogger(__name__)

APP_CACHE_KEY = "tiny_app_files_cache"
CACHE_PREFIX = "tiny_app_cache_"
DEFAULT_APP_CAPACITY = 4

# Errors a storage write may raise. All of them are absorbed.
_WRITE_ERRORS = (OSError, TypeError, ValueError)


class CacheKind(str, Enum):
    APP = "app"
    APP_LIST = "apps"
    SESSION = "session"
    SESSION_LIST = "sessions"
    FOLDER_ID = "folderId"
    FILE_ID = "fileId"
    SESSION_OWNER = "sessionOwner"


# Stored as the bare value, without a cachedAt wrapper.
_RAW_KINDS = {CacheKind.FOLDER_ID, CacheKind.FILE_ID, CacheKind.SESSION_OWNER}


class CacheQuotaExceeded(OSError):
    """Durable storage refused a write because it is full."""


# ---------------------------------------------------------------------------
# Durable storage
# ---------------------------------------------------------------------------


class CacheStorage:
    """
    Durable string key/value storage.
    Implement with a JSON file for the host process, or in-memory for tests.
    """

    def get_item(self, key: str) -> str | None:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError


class MemoryCacheStorage(CacheStorage):
    """In-memory storage for testing. Optional byte quota, like browser storage."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.items: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def _size_with(self, key: str, value: str) -> int:
        size = sum(len(k) + len(v) for k, v in self.items.items() if k != key)
        return size + len(key) + len(value)

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise CacheQuotaExceeded(f"Storage quota of {self.quota_bytes} bytes exceeded")
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self.items)


class JsonFileCacheStorage(CacheStorage):
    """
    All keys in one JSON file. Writes replace the file atomically.
    An unreadable file is treated as empty.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._data: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._data is not None:
            return self._data
        data: dict[str, str] = {}
        if self.path.exists():
            try:
                with open(self.path) as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    data = {k: v for k, v in loaded.items() if isinstance(v, str)}
            except (OSError, ValueError):
                logger.debug("cache: unreadable cache file %s, starting empty", self.path, exc_info=True)
        self._data = data
        return data

    def _flush(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".cache-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = dict(self._load())
        data[key] = value
        self._flush(data)
        self._data = data

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        data = {k: v for k, v in data.items() if k != key}
        self._flush(data)
        self._data = data

    def keys(self) -> list[str]:
        return list(self._load())


# ---------------------------------------------------------------------------
# LRU index
# ---------------------------------------------------------------------------

_REMOVED = object()


class _LruIndex:
    """
    Min-heap on (cached_at, insertion seq) with lazy deletion.
    pop_oldest() returns the key with the smallest cached_at; ties go to the
    key that was written first.
    """

    def __init__(self) -> None:
        self._heap: list[list[Any]] = []
        self._entries: dict[str, list[Any]] = {}
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def push(self, key: str, cached_at: int) -> None:
        self.discard(key)
        entry = [cached_at, next(self._seq), key]
        self._entries[key] = entry
        heapq.heappush(self._heap, entry)
        if len(self._heap) > 2 * len(self._entries) + 16:
            self._compact()

    def discard(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            entry[-1] = _REMOVED

    def pop_oldest(self) -> str | None:
        while self._heap:
            _, _, key = heapq.heappop(self._heap)
            if key is not _REMOVED:
                del self._entries[key]
                return key
        return None

    def _compact(self) -> None:
        self._heap = [e for e in self._heap if e[-1] is not _REMOVED]
        heapq.heapify(self._heap)


# ---------------------------------------------------------------------------
# LocalCache
# ---------------------------------------------------------------------------


class LocalCache:
    """
    Page-lifetime cache in front of the remote store.

    Only the app table is bounded. Everything else lives until invalidated.
    """

    def __init__(
        self,
        storage: CacheStorage,
        *,
        app_capacity: int = DEFAULT_APP_CAPACITY,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if app_capacity < 1:
            raise ValueError("app_capacity must be at least 1")
        self._storage = storage
        self._capacity = app_capacity
        self._clock = clock
        self._apps: dict[str, CacheEntry[dict[str, Any]]] = {}
        self._lru = _LruIndex()
        self._load_apps()

    @property
    def app_capacity(self) -> int:
        return self._capacity

    # -- public API --

    def get(self, kind: CacheKind, key: str) -> CacheEntry[Any] | None:
        """Pure lookup. Never touches the network and never updates recency."""
        if kind is CacheKind.APP:
            entry = self._apps.get(key)
            if entry is None:
                return None
            return CacheEntry(value=copy.deepcopy(entry.value), cached_at=entry.cached_at)
        return self._read(kind, key)

    def put(self, kind: CacheKind, key: str, value: Any) -> CacheEntry[Any]:
        """Write or overwrite an entry stamped with the current time."""
        cached_at = self._clock()
        stored = copy.deepcopy(value)

        if kind is CacheKind.APP:
            self._apps[key] = CacheEntry(value=stored, cached_at=cached_at)
            self._lru.push(key, cached_at)
            for evicted in self._evict():
                logger.debug("cache: evicted app %s", evicted)
            self._persist_apps()
            return CacheEntry(value=copy.deepcopy(stored), cached_at=cached_at)

        if kind in _RAW_KINDS:
            self._write(self._storage_key(kind, key), stored)
            return CacheEntry(value=stored, cached_at=None)

        self._write(self._storage_key(kind, key), {"value": stored, "cachedAt": cached_at})
        return CacheEntry(value=copy.deepcopy(stored), cached_at=cached_at)

    def invalidate(self, kind: CacheKind, key: str) -> None:
        """Remove one entry so the next load has to re-fetch."""
        if kind is CacheKind.APP:
            if self._apps.pop(key, None) is not None:
                self._lru.discard(key)
                self._persist_apps()
            return
        try:
            self._storage.remove_item(self._storage_key(kind, key))
        except _WRITE_ERRORS as e:
            logger.warning("cache: failed to remove %s/%s: %s", kind.value, key, e)

    def keys(self, kind: CacheKind) -> list[str]:
        """All keys currently cached for a kind."""
        if kind is CacheKind.APP:
            return list(self._apps)
        prefix = f"{CACHE_PREFIX}{kind.value}_"
        return [k[len(prefix):] for k in self._storage.keys() if k.startswith(prefix)]

    def items(self, kind: CacheKind) -> list[tuple[str, CacheEntry[Any]]]:
        """All readable (key, entry) pairs for a kind. Corrupt entries are skipped."""
        result = []
        for key in self.keys(kind):
            entry = self.get(kind, key)
            if entry is not None:
                result.append((key, entry))
        return result

    def size(self, kind: CacheKind) -> int:
        if kind is CacheKind.APP:
            return len(self._apps)
        return len(self.keys(kind))

    # -- app table --

    def _load_apps(self) -> None:
        raw = self._storage.get_item(APP_CACHE_KEY)
        if not raw:
            return
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("cache: corrupt app cache, treating as empty")
            return
        if not isinstance(data, dict):
            logger.debug("cache: app cache is not a mapping, treating as empty")
            return

        loaded: list[tuple[str, dict[str, Any], int]] = []
        for app_id, record in data.items():
            if not isinstance(record, dict) or not isinstance(record.get("cachedAt"), int):
                logger.debug("cache: skipping malformed app entry %s", app_id)
                continue
            value = {k: v for k, v in record.items() if k != "cachedAt"}
            loaded.append((app_id, value, record["cachedAt"]))

        # Stable sort keeps stored order for equal timestamps.
        loaded.sort(key=lambda item: item[2])
        for app_id, value, cached_at in loaded:
            self._apps[app_id] = CacheEntry(value=value, cached_at=cached_at)
            self._lru.push(app_id, cached_at)

        if self._evict():
            self._persist_apps()

    def _evict(self) -> list[str]:
        evicted = []
        while len(self._apps) > self._capacity:
            oldest = self._lru.pop_oldest()
            if oldest is None:
                break
            self._apps.pop(oldest, None)
            evicted.append(oldest)
        return evicted

    def _persist_apps(self) -> None:
        payload = {
            app_id: {**entry.value, "cachedAt": entry.cached_at}
            for app_id, entry in self._apps.items()
        }
        self._write(APP_CACHE_KEY, payload)

    # -- generic kinds --

    @staticmethod
    def _storage_key(kind: CacheKind, key: str) -> str:
        return f"{CACHE_PREFIX}{kind.value}_{key}"

    def _read(self, kind: CacheKind, key: str) -> CacheEntry[Any] | None:
        raw = self._storage.get_item(self._storage_key(kind, key))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("cache: corrupt entry %s/%s, treating as absent", kind.value, key)
            return None

        if kind in _RAW_KINDS:
            return CacheEntry(value=data, cached_at=None)

        if not isinstance(data, dict) or "value" not in data or not isinstance(data.get("cachedAt"), int):
            logger.debug("cache: malformed entry %s/%s, treating as absent", kind.value, key)
            return None
        return CacheEntry(value=data["value"], cached_at=data["cachedAt"])

    def _write(self, storage_key: str, payload: Any) -> None:
        try:
            self._storage.set_item(storage_key, json.dumps(payload))
        except _WRITE_ERRORS as e:
            logger.warning("cache: write failed for %s: %s", storage_key, e)
