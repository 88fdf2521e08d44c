"""
tinyapp core — Remote Store Adapter

Thin typed interface to the hierarchical remote document store (folders and
files). The store is the durable source of truth; this module only consumes
its API surface.

Implement with Drive for production (backend.services.drive), or in-memory
for tests and local development.
"""

from __future__ import annotations

import itertools
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from engine.core.types import now_iso

TokenProvider = Callable[[], str | None]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RemoteStoreError(Exception):
    """Non-success response from the remote store. Never retried by the core."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthenticationMissing(RemoteStoreError):
    """No valid bearer credential. Raised before any network attempt."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, status_code=401)


# ---------------------------------------------------------------------------
# Document reference
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentRef:
    """A handle to a file or folder in the remote store."""

    id: str
    name: str
    modified_time: str | None = None
    is_folder: bool = False


# ---------------------------------------------------------------------------
# Storage protocol
# ---------------------------------------------------------------------------


class RemoteStore:
    """
    Abstract remote store interface.
    parent_id=None addresses the store root.
    """

    async def find(self, parent_id: str | None, name: str) -> DocumentRef | None:
        """Find a non-trashed child by name. Returns None if absent."""
        raise NotImplementedError

    async def create(self, parent_id: str | None, name: str, content: str) -> DocumentRef:
        """Create a file with text content."""
        raise NotImplementedError

    async def create_folder(self, parent_id: str | None, name: str) -> DocumentRef:
        """Create a folder."""
        raise NotImplementedError

    async def read(self, ref: DocumentRef) -> str:
        """Read a file's content."""
        raise NotImplementedError

    async def update(self, ref: DocumentRef, content: str) -> None:
        """Replace a file's content."""
        raise NotImplementedError

    async def set_trashed(self, ref: DocumentRef) -> None:
        """Move a file or folder (and everything under it) to the trash."""
        raise NotImplementedError

    async def list(self, parent_id: str | None, *, folders_only: bool = False) -> list[DocumentRef]:
        """List non-trashed children, most recently modified first."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


@dataclass
class _StoredDocument:
    id: str
    name: str
    parent_id: str | None
    is_folder: bool
    content: str | None
    modified_time: str
    tick: int
    trashed: bool = False


class MemoryRemoteStore(RemoteStore):
    """
    In-memory remote store for testing.

    `calls` records every operation as (op, target) so tests can assert that a
    cache hit made no network call.
    """

    def __init__(self, token_provider: TokenProvider | None = None) -> None:
        self.documents: dict[str, _StoredDocument] = {}
        self.calls: list[tuple[str, str | None]] = []
        self._token_provider = token_provider
        self._ticks = itertools.count(1)
        self._failures: dict[str, list[RemoteStoreError]] = {}

    def _check_auth(self) -> None:
        if self._token_provider is not None and not self._token_provider():
            raise AuthenticationMissing()

    def _record(self, op: str, target: str | None) -> None:
        self._check_auth()
        self.calls.append((op, target))
        queued = self._failures.get(op)
        if queued:
            raise queued.pop(0)

    def fail_next(self, op: str, error: RemoteStoreError | None = None) -> None:
        """Make the next call of `op` raise. Queued failures are consumed in order."""
        self._failures.setdefault(op, []).append(error or RemoteStoreError(f"{op} failed", status_code=500))

    def _touch(self, doc: _StoredDocument) -> None:
        doc.modified_time = now_iso()
        doc.tick = next(self._ticks)

    def _is_trashed(self, doc: _StoredDocument) -> bool:
        current: _StoredDocument | None = doc
        while current is not None:
            if current.trashed:
                return True
            current = self.documents.get(current.parent_id) if current.parent_id else None
        return False

    def _get(self, ref: DocumentRef) -> _StoredDocument:
        doc = self.documents.get(ref.id)
        if doc is None:
            raise RemoteStoreError(f"File not found: {ref.id}", status_code=404)
        return doc

    def _insert(self, parent_id: str | None, name: str, content: str | None, is_folder: bool) -> DocumentRef:
        doc_id = uuid.uuid4().hex
        doc = _StoredDocument(
            id=doc_id,
            name=name,
            parent_id=parent_id,
            is_folder=is_folder,
            content=content,
            modified_time=now_iso(),
            tick=next(self._ticks),
        )
        self.documents[doc_id] = doc
        return self._ref(doc)

    @staticmethod
    def _ref(doc: _StoredDocument) -> DocumentRef:
        return DocumentRef(id=doc.id, name=doc.name, modified_time=doc.modified_time, is_folder=doc.is_folder)

    def _children(self, parent_id: str | None) -> list[_StoredDocument]:
        return [d for d in self.documents.values() if d.parent_id == parent_id and not self._is_trashed(d)]

    async def find(self, parent_id: str | None, name: str) -> DocumentRef | None:
        self._record("find", f"{parent_id}/{name}")
        for doc in self._children(parent_id):
            if doc.name == name:
                return self._ref(doc)
        return None

    async def create(self, parent_id: str | None, name: str, content: str) -> DocumentRef:
        self._record("create", f"{parent_id}/{name}")
        return self._insert(parent_id, name, content, is_folder=False)

    async def create_folder(self, parent_id: str | None, name: str) -> DocumentRef:
        self._record("create_folder", f"{parent_id}/{name}")
        return self._insert(parent_id, name, None, is_folder=True)

    async def read(self, ref: DocumentRef) -> str:
        self._record("read", ref.id)
        doc = self._get(ref)
        if doc.is_folder:
            raise RemoteStoreError(f"Cannot read folder: {ref.id}", status_code=400)
        return doc.content or ""

    async def update(self, ref: DocumentRef, content: str) -> None:
        self._record("update", ref.id)
        doc = self._get(ref)
        doc.content = content
        self._touch(doc)

    async def set_trashed(self, ref: DocumentRef) -> None:
        self._record("set_trashed", ref.id)
        doc = self._get(ref)
        doc.trashed = True
        self._touch(doc)

    async def list(self, parent_id: str | None, *, folders_only: bool = False) -> list[DocumentRef]:
        self._record("list", parent_id)
        children = self._children(parent_id)
        if folders_only:
            children = [d for d in children if d.is_folder]
        children.sort(key=lambda d: d.tick, reverse=True)
        return [self._ref(d) for d in children]

    def network_calls(self, op: str | None = None) -> int:
        """Count recorded calls, optionally of one kind."""
        if op is None:
            return len(self.calls)
        return sum(1 for name, _ in self.calls if name == op)
