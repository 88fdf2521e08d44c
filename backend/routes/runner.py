"""
App runner: the guest frame and its relay channel.

GET /apps/{app_id}/frame serves the guest HTML under a sandbox CSP
(scripts allowed, no same-origin privileges).

WS /ws/apps/{app_id} relays one mounted guest to a SandboxHost.

Protocol:
  Client → Server:  {"from": "guest", "data": <guest message>}
                    {"from": "host", "action": "switch-session", "session_id": "..."}
                    {"from": "host", "action": "new-session", "name": "..."}
                    {"from": "host", "action": "reload"}
  Server → Client:  init | session-saved   (bare guest wire messages)
                    {"type": "host.status", ...} | {"type": "host.error", ...}
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse

from backend.routes.apps import get_sync
from engine.core.remote import RemoteStoreError
from engine.core.sandbox import GuestContext, SandboxHost
from engine.core.sync import SyncCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runner"])

SANDBOX_CSP = "sandbox allow-scripts"


class WebSocketGuest(GuestContext):
    """The guest context handle for one relay connection."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def post_message(self, message: dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(message))


@router.get("/apps/{app_id}/frame")
async def app_frame(app_id: str, sync: SyncCoordinator = Depends(get_sync)) -> HTMLResponse:
    """Serve the guest page. Only scripts run; the page gets an opaque origin."""
    bundle = await sync.load_app(app_id)
    return HTMLResponse(
        content=bundle.html or "",
        headers={"Content-Security-Policy": SANDBOX_CSP},
    )


def _status(host: SandboxHost) -> dict[str, Any]:
    session = host.current_session
    return {
        "type": "host.status",
        "state": host.state.value,
        "app_id": host.app_id,
        "session_id": session.id if session else None,
        "sessions": [s.to_dict() for s in host.sessions],
        "synced": host.sync_label(),
    }


async def _handle_host_action(websocket: WebSocket, host: SandboxHost, msg: dict[str, Any]) -> None:
    action = msg.get("action")
    try:
        if action == "switch-session":
            session_id = msg.get("session_id")
            if not session_id:
                await websocket.send_text(json.dumps({"type": "host.error", "action": action, "error": "session_id is required"}))
                return
            await host.switch_session(session_id)
        elif action == "new-session":
            name = msg.get("name")
            if not name:
                await websocket.send_text(json.dumps({"type": "host.error", "action": action, "error": "name is required"}))
                return
            await host.new_session(name)
        elif action == "reload":
            await host.reload()
        else:
            logger.warning("runner: unknown host action %r", action)
            return
    except RemoteStoreError as e:
        logger.warning("runner: %s failed for app_id=%s: %s", action, host.app_id, e.message)
        await websocket.send_text(json.dumps({"type": "host.error", "action": action, "error": e.message}))
        return

    await websocket.send_text(json.dumps(_status(host)))


@router.websocket("/ws/apps/{app_id}")
async def app_runner(websocket: WebSocket, app_id: str) -> None:
    """
    Mount a guest and relay its messages.
    Tears the host down when the connection closes; in-flight saves still finish.
    """
    await websocket.accept()
    logger.info("WebSocket accepted: app_id=%s", app_id)

    sync: SyncCoordinator = websocket.app.state.sync
    guest = WebSocketGuest(websocket)
    host = SandboxHost(sync, app_id)

    try:
        await host.open(guest)
    except RemoteStoreError as e:
        logger.warning("runner: failed to open app_id=%s: %s", app_id, e.message)
        await websocket.send_text(json.dumps({"type": "host.error", "action": "open", "error": e.message}))
        await websocket.close(code=1011)
        return

    await websocket.send_text(json.dumps(_status(host)))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                envelope = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("runner: malformed frame from client: %r", raw[:200])
                continue

            if not isinstance(envelope, dict):
                continue

            origin = envelope.get("from")
            if origin == "host":
                await _handle_host_action(websocket, host, envelope)
                continue

            # Only frames tagged as coming from the mounted guest carry its handle.
            source = guest if origin == "guest" else origin
            await host.handle_message(source, envelope.get("data"))

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected: app_id=%s", app_id)
    finally:
        host.teardown()
