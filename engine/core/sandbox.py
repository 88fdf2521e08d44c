"""
tinyapp core — Sandbox Host

Manages the lifecycle of one guest execution context: an untrusted app page
running script-only, without same-origin privileges.

States:
  UNINITIALIZED → AWAITING_READY → INITIALIZED ⇄ SAVING → TORN_DOWN

Protocol:
  ready           → send init (manifest, params, current session data or {})
  update-session  → replace session data in memory now, persist in the
                    background, answer with session-saved when the write ends
  switch/new/reload (host side) → replace state, re-send init, no re-mount

Every inbound message must come from the exact context handle this host
mounted. Anything else is dropped without a reply.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel

from engine.core.freshness import format_sync_time
from engine.core.protocol import (
    INBOUND_TYPES,
    InitMessage,
    ReadyMessage,
    SessionSavedMessage,
    UpdateSessionMessage,
    dump_message,
    parse_guest_message,
)
from engine.core.sync import SyncCoordinator
from engine.core.types import AppBundle, SessionRecord, SessionSummary

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "Default"


class HostState(str, Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_READY = "awaiting_ready"
    INITIALIZED = "initialized"
    SAVING = "saving"
    TORN_DOWN = "torn_down"


class GuestContext:
    """
    Handle to one isolated guest execution context.
    The host compares handles by identity; equal-looking handles are not the same guest.
    """

    async def post_message(self, message: dict[str, Any]) -> None:
        raise NotImplementedError


class SandboxHost:
    """
    One host per mounted guest. Holds at most one current session.
    """

    def __init__(self, sync: SyncCoordinator, app_id: str) -> None:
        self._sync = sync
        self.app_id = app_id
        self.state = HostState.UNINITIALIZED
        self.bundle: AppBundle | None = None
        self.sessions: list[SessionSummary] = []
        self.current_session: SessionRecord | None = None
        self._context: GuestContext | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def context(self) -> GuestContext | None:
        return self._context

    @property
    def pending_saves(self) -> int:
        return len(self._pending)

    # -- lifecycle --

    async def load(self, force_refresh: bool = False) -> None:
        """
        Load the app bundle, its session list and the first session.
        An app with no sessions gets a "Default" one.
        """
        self.bundle = await self._sync.load_app(self.app_id, force_refresh)
        self.sessions = await self._sync.list_sessions(self.app_id, force_refresh)

        if self.sessions:
            self.current_session = await self._sync.load_session(
                self.sessions[0].id, force_refresh, app_id=self.app_id
            )
        else:
            self.current_session = await self._sync.create_session(self.app_id, DEFAULT_SESSION_NAME)
            self.sessions = await self._sync.list_sessions(self.app_id)

    async def open(self, context: GuestContext, *, force_refresh: bool = False) -> None:
        """Load state, then mount the guest."""
        await self.load(force_refresh)
        self.mount(context)

    def mount(self, context: GuestContext) -> None:
        """Record the only context whose messages will be accepted."""
        if self.state is HostState.TORN_DOWN:
            raise RuntimeError("Cannot mount a torn down sandbox host")
        self._context = context
        self.state = HostState.AWAITING_READY
        logger.info("sandbox: mounted guest app_id=%s", self.app_id)

    def teardown(self) -> None:
        """
        Stop accepting messages. In-flight saves are not cancelled; they
        finish and their outcome is discarded.
        """
        self._context = None
        self.state = HostState.TORN_DOWN
        logger.info("sandbox: torn down app_id=%s pending_saves=%d", self.app_id, len(self._pending))

    async def drain(self) -> None:
        """Wait for every in-flight save to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- inbound --

    async def handle_message(self, source: Any, data: Any) -> bool:
        """
        Process one inbound message. Returns True if it was acted upon.
        """
        if self._context is None or source is not self._context:
            logger.debug("sandbox: dropped message from unknown source app_id=%s", self.app_id)
            return False

        message = parse_guest_message(data)
        if message is None or message.type not in INBOUND_TYPES:
            logger.debug("sandbox: ignored invalid guest message app_id=%s", self.app_id)
            return False

        if isinstance(message, ReadyMessage):
            await self.send_init()
            return True

        if isinstance(message, UpdateSessionMessage):
            return self._apply_update(message)

        return False

    def _apply_update(self, message: UpdateSessionMessage) -> bool:
        session = self.current_session
        if session is None:
            logger.debug("sandbox: update-session with no current session app_id=%s", self.app_id)
            return False

        # Optimistic: memory changes now and is never rolled back.
        session.data = message.data
        snapshot = SessionRecord(
            id=session.id,
            name=session.name,
            created_at=session.created_at,
            data=copy.deepcopy(message.data),
        )

        task = asyncio.create_task(self._save(snapshot, message.seq))
        self._pending.add(task)
        task.add_done_callback(self._on_save_done)
        self.state = HostState.SAVING
        return True

    async def _save(self, record: SessionRecord, seq: int | None) -> None:
        try:
            await self._sync.save_session(record.id, record, app_id=self.app_id)
        except Exception as e:
            logger.warning("sandbox: failed to save session_id=%s: %s", record.id, e)
            outcome = SessionSavedMessage(success=False, error=str(e), seq=seq)
        else:
            outcome = SessionSavedMessage(success=True, seq=seq)

        if self.state is HostState.TORN_DOWN:
            logger.debug("sandbox: discarded save outcome after teardown session_id=%s", record.id)
            return
        await self._post(outcome)

    def _on_save_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if not self._pending and self.state is HostState.SAVING:
            self.state = HostState.INITIALIZED

    # -- outbound --

    async def send_init(self) -> None:
        """Push the current manifest, params and session data to the guest."""
        if self._context is None:
            return

        bundle = self.bundle
        message = InitMessage(
            manifest=bundle.manifest.to_dict() if bundle and bundle.manifest else {},
            params=bundle.params if bundle else {},
            session=self.current_session.data if self.current_session else {},
        )
        await self._post(message)
        self.state = HostState.SAVING if self._pending else HostState.INITIALIZED

    async def _post(self, message: BaseModel) -> None:
        context = self._context
        if context is None:
            return
        try:
            await context.post_message(dump_message(message))
        except Exception as e:
            logger.warning("sandbox: failed to post to guest app_id=%s: %s", self.app_id, e)

    # -- host actions --

    async def _reinit(self) -> None:
        if self.state is HostState.TORN_DOWN:
            return
        self.state = HostState.AWAITING_READY
        await self.send_init()

    async def switch_session(self, session_id: str) -> None:
        """Make another session current and re-send init."""
        record = await self._sync.load_session(session_id, app_id=self.app_id)
        self.current_session = record
        await self._reinit()

    async def new_session(self, name: str) -> SessionRecord:
        """Create a session, make it current and re-send init."""
        record = await self._sync.create_session(self.app_id, name)
        self.current_session = record
        self.sessions = await self._sync.list_sessions(self.app_id)
        await self._reinit()
        return record

    async def reload(self) -> None:
        """Force-refresh the app and the current session from the remote store, then re-send init."""
        self.bundle = await self._sync.load_app(self.app_id, force_refresh=True)
        if self.current_session is not None:
            self.current_session = await self._sync.load_session(
                self.current_session.id, force_refresh=True, app_id=self.app_id
            )
        await self._reinit()

    # -- display --

    def sync_label(self, now_ms: int | None = None) -> str:
        """Freshness text for the current bundle, e.g. "5m ago"."""
        return format_sync_time(self.bundle.sync_time if self.bundle else None, now_ms)
