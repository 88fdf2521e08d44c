"""Session routes, nested under an app."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from backend.models.app import (
    CreateSessionRequest,
    SaveSessionRequest,
    SessionRecordResponse,
    SessionResponse,
)
from backend.routes.apps import get_sync
from engine.core.sync import SyncCoordinator
from engine.core.types import SessionRecord

router = APIRouter(prefix="/api/apps/{app_id}/sessions", tags=["sessions"])


@router.get("", status_code=200)
async def list_sessions(
    app_id: str,
    force: bool = False,
    sync: SyncCoordinator = Depends(get_sync),
) -> list[SessionResponse]:
    """List an app's sessions, most recently modified first."""
    sessions = await sync.list_sessions(app_id, force_refresh=force)
    return [SessionResponse.from_summary(s) for s in sessions]


@router.post("", status_code=201)
async def create_session(
    app_id: str,
    req: CreateSessionRequest,
    sync: SyncCoordinator = Depends(get_sync),
) -> SessionRecordResponse:
    record = await sync.create_session(app_id, req.name)
    return SessionRecordResponse.from_record(record)


@router.get("/{session_id}", status_code=200)
async def load_session(
    app_id: str,
    session_id: str,
    force: bool = False,
    sync: SyncCoordinator = Depends(get_sync),
) -> SessionRecordResponse:
    record = await sync.load_session(session_id, force_refresh=force, app_id=app_id)
    return SessionRecordResponse.from_record(record)


@router.put("/{session_id}", status_code=204)
async def save_session(
    app_id: str,
    session_id: str,
    req: SaveSessionRequest,
    sync: SyncCoordinator = Depends(get_sync),
) -> Response:
    """
    Replace a session's data.

    Name and creation time come from the current record, so the stored
    document keeps them.
    """
    current: SessionRecord = await sync.load_session(session_id, app_id=app_id)
    record = SessionRecord(
        id=session_id,
        name=current.name,
        created_at=current.created_at,
        data=req.data,
    )
    await sync.save_session(session_id, record, app_id=app_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
