"""
tinyapp core — Shared Types

Data classes used across the cache, the sync coordinator and the sandbox host.
These are the contracts that bind the core together.

Timestamps:
- `cached_at` / `sync_time` are integer milliseconds since the epoch
- `created_at` / `modified_time` are ISO 8601 UTC strings (as the remote store returns them)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

T = TypeVar("T")

DEFAULT_MANIFEST_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# App bundle
# ---------------------------------------------------------------------------


@dataclass
class Manifest:
    """Describes an app: display name, version, parameter defaults, session schema."""

    name: str
    version: str = DEFAULT_MANIFEST_VERSION
    params: dict[str, Any] = field(default_factory=dict)
    session_schema: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "params": self.params,
            "sessionSchema": self.session_schema,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Manifest:
        return cls(
            name=d.get("name", ""),
            version=d.get("version", DEFAULT_MANIFEST_VERSION),
            params=d.get("params") or {},
            session_schema=d.get("sessionSchema") or {},
        )


@dataclass
class AppBundle:
    """
    The triple of manifest, params and HTML that makes up one micro-app.

    `manifest` is None when the remote app folder has no manifest.json.
    `sync_time` is set by the coordinator: the cache timestamp on a hit,
    the fetch time on a miss.
    """

    id: str
    manifest: Manifest | None
    params: dict[str, Any]
    html: str | None
    sync_time: int | None = None

    def to_cache(self) -> dict[str, Any]:
        """Cache payload. sync_time is not stored; cachedAt replaces it."""
        return {
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "params": self.params,
            "html": self.html,
        }

    @classmethod
    def from_cache(cls, app_id: str, d: dict[str, Any], sync_time: int | None = None) -> AppBundle:
        manifest = d.get("manifest")
        return cls(
            id=app_id,
            manifest=Manifest.from_dict(manifest) if manifest else None,
            params=d.get("params") or {},
            html=d.get("html"),
            sync_time=sync_time,
        )

    def with_changes(self, **changes: Any) -> AppBundle:
        """Return a copy with some fields replaced. Never mutates self."""
        return replace(self, **changes)


@dataclass
class AppSummary:
    """One row of the app list."""

    id: str
    name: str
    modified_time: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "modifiedTime": self.modified_time}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AppSummary:
        return cls(id=d["id"], name=d["name"], modified_time=d.get("modifiedTime"))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass
class SessionRecord:
    """One named, persisted state snapshot for an app."""

    id: str
    name: str
    created_at: str
    data: dict[str, Any] = field(default_factory=dict)
    sync_time: int | None = None

    def to_document(self) -> dict[str, Any]:
        """The JSON document stored in the remote store (id lives in the file ref)."""
        return {"name": self.name, "createdAt": self.created_at, "data": self.data}

    @classmethod
    def from_document(cls, session_id: str, d: dict[str, Any], sync_time: int | None = None) -> SessionRecord:
        """Build a record from a stored document. Non-object data reads as empty."""
        data = d.get("data")
        return cls(
            id=session_id,
            name=d.get("name", ""),
            created_at=d.get("createdAt", ""),
            data=data if isinstance(data, dict) else {},
            sync_time=sync_time,
        )


@dataclass
class SessionSummary:
    """One row of an app's session list."""

    id: str
    name: str
    modified_time: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "modifiedTime": self.modified_time}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SessionSummary:
        return cls(id=d["id"], name=d["name"], modified_time=d.get("modifiedTime"))


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry(Generic[T]):
    """
    Wraps any cached value.
    cached_at is the sole input to LRU ordering and freshness display.
    None for raw id lookups, which are stored without a timestamp.
    """

    value: T
    cached_at: int | None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
