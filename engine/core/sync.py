"""
tinyapp core — Sync Coordinator

Sits between the host surface and the outside world (the remote store).
Decides, per document, whether to serve the local cache or fetch, and keeps
the cache converged with the remote store on every mutation.

Operations on apps and sessions: list, create, load, save, remove.

Rules:
- load serves the cache unless forced; a fetch refreshes the cache
- save writes remotely first and touches the cache only on success
- remove trashes remotely, then invalidates everything cached under the app
- folder and file ids are cached indefinitely; a miss looks up or creates

This is where IO happens. The cache itself is synchronous and in-process.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from engine.core.cache import CacheKind, LocalCache
from engine.core.remote import DocumentRef, RemoteStore, RemoteStoreError
from engine.core.templates import default_app_html
from engine.core.types import (
    AppBundle,
    AppSummary,
    Manifest,
    SessionRecord,
    SessionSummary,
    now_iso,
)

logger = logging.getLogger(__name__)

ROOT_FOLDER_NAME = "tiny-app.dev"
MANIFEST_FILE = "manifest.json"
HTML_FILE = "app.html"
PARAMS_FILE = "params.json"
SESSIONS_FOLDER = "sessions"
SESSION_SUFFIX = ".json"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DocumentParseError(RemoteStoreError):
    """A remote file exists but its JSON content is malformed."""

    def __init__(self, message: str):
        super().__init__(message, status_code=None)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _dump_json(value: Any) -> str:
    return json.dumps(value, indent=2)


def _parse_json(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DocumentParseError(f"Failed to parse {what}: {e}") from e


def _file_key(parent_id: str, name: str) -> str:
    return f"{parent_id}_{name}"


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class SyncCoordinator:
    """
    Cache-or-fetch orchestration for app bundles and session records.
    The remote store and the cache are injected so tests can supply fakes
    and independent coordinators never share state.
    """

    def __init__(
        self,
        remote: RemoteStore,
        cache: LocalCache,
        *,
        root_folder_name: str = ROOT_FOLDER_NAME,
    ) -> None:
        self._remote = remote
        self._cache = cache
        self._root_name = root_folder_name
        self._root_key = f"root_{root_folder_name}"

    @property
    def cache(self) -> LocalCache:
        return self._cache

    # -- id resolution --

    async def ensure_root_folder(self) -> str:
        """Find or create the root folder that holds every app."""
        cached = self._cache.get(CacheKind.FOLDER_ID, self._root_key)
        if cached is not None:
            return cached.value

        ref = await self._remote.find(None, self._root_name)
        if ref is None:
            ref = await self._remote.create_folder(None, self._root_name)
            logger.info("sync: created root folder %s (%s)", self._root_name, ref.id)

        self._cache.put(CacheKind.FOLDER_ID, self._root_key, ref.id)
        return ref.id

    async def resolve_file(self, parent_id: str, name: str) -> DocumentRef | None:
        """File id lookup. Only hits are cached; a miss asks the store every time."""
        key = _file_key(parent_id, name)
        cached = self._cache.get(CacheKind.FILE_ID, key)
        if cached is not None:
            return DocumentRef(id=cached.value, name=name)

        ref = await self._remote.find(parent_id, name)
        if ref is not None:
            self._cache.put(CacheKind.FILE_ID, key, ref.id)
        return ref

    async def sessions_folder_id(self, app_id: str) -> str:
        """Find or create the app's sessions folder."""
        cached = self._cache.get(CacheKind.FOLDER_ID, app_id)
        if cached is not None:
            return cached.value

        ref = await self.resolve_file(app_id, SESSIONS_FOLDER)
        if ref is None:
            ref = await self._remote.create_folder(app_id, SESSIONS_FOLDER)
            logger.info("sync: created sessions folder for app_id=%s", app_id)

        self._cache.put(CacheKind.FOLDER_ID, app_id, ref.id)
        return ref.id

    async def _read_file(self, parent_id: str, name: str) -> str | None:
        ref = await self.resolve_file(parent_id, name)
        if ref is None:
            return None
        try:
            return await self._remote.read(ref)
        except RemoteStoreError as e:
            if e.status_code == 404:
                # The cached id points at a file that no longer exists.
                self._cache.invalidate(CacheKind.FILE_ID, _file_key(parent_id, name))
            raise

    async def _write_file(self, parent_id: str, name: str, content: str) -> DocumentRef:
        ref = await self.resolve_file(parent_id, name)
        if ref is not None:
            await self._remote.update(ref, content)
            return ref

        ref = await self._remote.create(parent_id, name, content)
        self._cache.put(CacheKind.FILE_ID, _file_key(parent_id, name), ref.id)
        return ref

    # -- apps --

    async def list_apps(self, force_refresh: bool = False) -> list[AppSummary]:
        """List apps, most recently modified first."""
        if not force_refresh:
            cached = self._cache.get(CacheKind.APP_LIST, self._root_key)
            if cached is not None:
                try:
                    return [AppSummary.from_dict(d) for d in cached.value]
                except (KeyError, TypeError):
                    logger.debug("sync: malformed cached app list, refetching")

        root_id = await self.ensure_root_folder()
        refs = await self._remote.list(root_id, folders_only=True)
        apps = [AppSummary(id=r.id, name=r.name, modified_time=r.modified_time) for r in refs]
        self._cache.put(CacheKind.APP_LIST, self._root_key, [a.to_dict() for a in apps])
        return apps

    async def create_app(self, name: str, html: str | None = None) -> AppSummary:
        """
        Create an app folder with a sessions subfolder and the three app files.
        Seeds the cache with the new bundle and every new id.
        """
        root_id = await self.ensure_root_folder()
        folder = await self._remote.create_folder(root_id, name)
        app_id = folder.id

        sessions = await self._remote.create_folder(app_id, SESSIONS_FOLDER)
        self._cache.put(CacheKind.FOLDER_ID, app_id, sessions.id)

        bundle = AppBundle(
            id=app_id,
            manifest=Manifest(name=name),
            params={},
            html=html or default_app_html(name),
        )
        files = {
            MANIFEST_FILE: _dump_json(bundle.manifest.to_dict()),
            HTML_FILE: bundle.html,
            PARAMS_FILE: _dump_json(bundle.params),
        }
        refs = await asyncio.gather(
            *(self._remote.create(app_id, file_name, content) for file_name, content in files.items())
        )
        for file_name, ref in zip(files, refs):
            self._cache.put(CacheKind.FILE_ID, _file_key(app_id, file_name), ref.id)

        self._cache.put(CacheKind.APP, app_id, bundle.to_cache())
        self._cache.invalidate(CacheKind.APP_LIST, self._root_key)

        logger.info("sync: created app %r app_id=%s", name, app_id)
        return AppSummary(id=app_id, name=name, modified_time=folder.modified_time)

    async def load_app(self, app_id: str, force_refresh: bool = False) -> AppBundle:
        """
        Return the app bundle. A cache hit makes no network call and carries
        the entry's cached_at as sync_time.
        """
        if not force_refresh:
            cached = self._cache.get(CacheKind.APP, app_id)
            if cached is not None:
                logger.debug("sync: app cache hit app_id=%s", app_id)
                return AppBundle.from_cache(app_id, cached.value, sync_time=cached.cached_at)

        manifest_text, params_text, html = await asyncio.gather(
            self._read_file(app_id, MANIFEST_FILE),
            self._read_file(app_id, PARAMS_FILE),
            self._read_file(app_id, HTML_FILE),
        )
        manifest = _parse_json(manifest_text, MANIFEST_FILE) if manifest_text else None
        params = _parse_json(params_text, PARAMS_FILE) if params_text else None

        bundle = AppBundle(
            id=app_id,
            manifest=Manifest.from_dict(manifest) if isinstance(manifest, dict) else None,
            params=params if isinstance(params, dict) else {},
            html=html,
        )
        entry = self._cache.put(CacheKind.APP, app_id, bundle.to_cache())
        bundle.sync_time = entry.cached_at
        return bundle

    async def save_app(self, app_id: str, bundle: AppBundle) -> None:
        """
        Write html, manifest and params. The cache gets the whole bundle only
        if every write succeeded. A bundle without a manifest leaves
        manifest.json and the cached manifest as they were.
        """
        writes = [
            self._write_file(app_id, HTML_FILE, bundle.html or ""),
            self._write_file(app_id, PARAMS_FILE, _dump_json(bundle.params)),
        ]
        if bundle.manifest is not None:
            writes.append(self._write_file(app_id, MANIFEST_FILE, _dump_json(bundle.manifest.to_dict())))

        results = await asyncio.gather(*writes, return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            if len(errors) < len(results):
                # Remote is now partly new, partly old; the cached copy matches neither.
                self._cache.invalidate(CacheKind.APP, app_id)
            raise errors[0]

        if bundle.manifest is None:
            # manifest.json was not written; keep whatever manifest is cached.
            self._update_cached_app(app_id, html=bundle.html or "", params=bundle.params)
            return
        self._cache.put(CacheKind.APP, app_id, bundle.with_changes(id=app_id).to_cache())

    async def save_app_html(self, app_id: str, html: str) -> None:
        await self._write_file(app_id, HTML_FILE, html)
        self._update_cached_app(app_id, html=html)

    async def save_manifest(self, app_id: str, manifest: Manifest) -> None:
        await self._write_file(app_id, MANIFEST_FILE, _dump_json(manifest.to_dict()))
        self._update_cached_app(app_id, manifest=manifest)

    async def save_params(self, app_id: str, params: dict[str, Any]) -> None:
        await self._write_file(app_id, PARAMS_FILE, _dump_json(params))
        self._update_cached_app(app_id, params=params)

    def _update_cached_app(self, app_id: str, **changes: Any) -> None:
        """Replace one field of a cached bundle. Uncached apps stay uncached."""
        cached = self._cache.get(CacheKind.APP, app_id)
        if cached is None:
            return
        bundle = AppBundle.from_cache(app_id, cached.value).with_changes(**changes)
        self._cache.put(CacheKind.APP, app_id, bundle.to_cache())

    async def remove_app(self, app_id: str) -> None:
        """Trash the app remotely, then clear every cache entry rooted at it."""
        await self._remote.set_trashed(DocumentRef(id=app_id, name="", is_folder=True))
        self.invalidate_app(app_id)
        logger.info("sync: removed app_id=%s", app_id)

    def invalidate_app(self, app_id: str) -> None:
        """Cascade: bundle, lists, folder and file ids, and the app's session documents."""
        cache = self._cache

        session_ids: set[str] = set()
        listed = cache.get(CacheKind.SESSION_LIST, app_id)
        if listed is not None and isinstance(listed.value, list):
            session_ids.update(d["id"] for d in listed.value if isinstance(d, dict) and "id" in d)
        session_ids.update(sid for sid, entry in cache.items(CacheKind.SESSION_OWNER) if entry.value == app_id)

        for session_id in session_ids:
            cache.invalidate(CacheKind.SESSION, session_id)
            cache.invalidate(CacheKind.SESSION_OWNER, session_id)

        parents = [app_id]
        sessions_folder = cache.get(CacheKind.FOLDER_ID, app_id)
        if sessions_folder is not None:
            parents.append(sessions_folder.value)
        for key in cache.keys(CacheKind.FILE_ID):
            if any(key.startswith(f"{parent}_") for parent in parents):
                cache.invalidate(CacheKind.FILE_ID, key)

        cache.invalidate(CacheKind.FOLDER_ID, app_id)
        cache.invalidate(CacheKind.SESSION_LIST, app_id)
        cache.invalidate(CacheKind.APP, app_id)
        cache.invalidate(CacheKind.APP_LIST, self._root_key)

    # -- sessions --

    def _record_owner(self, session_id: str, app_id: str) -> None:
        current = self._cache.get(CacheKind.SESSION_OWNER, session_id)
        if current is None or current.value != app_id:
            self._cache.put(CacheKind.SESSION_OWNER, session_id, app_id)

    async def list_sessions(self, app_id: str, force_refresh: bool = False) -> list[SessionSummary]:
        """List an app's sessions, most recently modified first."""
        if not force_refresh:
            cached = self._cache.get(CacheKind.SESSION_LIST, app_id)
            if cached is not None:
                try:
                    return [SessionSummary.from_dict(d) for d in cached.value]
                except (KeyError, TypeError):
                    logger.debug("sync: malformed cached session list app_id=%s, refetching", app_id)

        folder_id = await self.sessions_folder_id(app_id)
        refs = await self._remote.list(folder_id)
        sessions = [
            SessionSummary(id=r.id, name=r.name.removesuffix(SESSION_SUFFIX), modified_time=r.modified_time)
            for r in refs
            if not r.is_folder
        ]
        for session in sessions:
            self._record_owner(session.id, app_id)
        self._cache.put(CacheKind.SESSION_LIST, app_id, [s.to_dict() for s in sessions])
        return sessions

    async def create_session(self, app_id: str, name: str) -> SessionRecord:
        """Create an empty session document and seed the cache with it."""
        folder_id = await self.sessions_folder_id(app_id)
        document = {"name": name, "createdAt": now_iso(), "data": {}}

        ref = await self._remote.create(folder_id, f"{name}{SESSION_SUFFIX}", _dump_json(document))

        entry = self._cache.put(CacheKind.SESSION, ref.id, document)
        self._record_owner(ref.id, app_id)
        self._cache.invalidate(CacheKind.SESSION_LIST, app_id)

        logger.info("sync: created session %r app_id=%s session_id=%s", name, app_id, ref.id)
        return SessionRecord.from_document(ref.id, document, sync_time=entry.cached_at)

    async def load_session(
        self,
        session_id: str,
        force_refresh: bool = False,
        *,
        app_id: str | None = None,
    ) -> SessionRecord:
        """Return a session record, from cache unless forced."""
        if app_id is not None:
            self._record_owner(session_id, app_id)

        if not force_refresh:
            cached = self._cache.get(CacheKind.SESSION, session_id)
            if cached is not None and isinstance(cached.value, dict):
                logger.debug("sync: session cache hit session_id=%s", session_id)
                return SessionRecord.from_document(session_id, cached.value, sync_time=cached.cached_at)

        text = await self._remote.read(DocumentRef(id=session_id, name=""))
        document = _parse_json(text, f"session {session_id}")
        if not isinstance(document, dict):
            raise DocumentParseError(f"Session {session_id} is not a JSON object")

        entry = self._cache.put(CacheKind.SESSION, session_id, document)
        return SessionRecord.from_document(session_id, document, sync_time=entry.cached_at)

    async def save_session(
        self,
        session_id: str,
        record: SessionRecord,
        *,
        app_id: str | None = None,
    ) -> None:
        """Write the session remotely; only then update the cache."""
        document = record.to_document()
        await self._remote.update(
            DocumentRef(id=session_id, name=f"{record.name}{SESSION_SUFFIX}"),
            _dump_json(document),
        )
        self._cache.put(CacheKind.SESSION, session_id, document)
        if app_id is not None:
            self._record_owner(session_id, app_id)
