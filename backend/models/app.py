"""App and session models for the host API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from engine.core.freshness import format_sync_time
from engine.core.types import AppBundle, AppSummary, SessionRecord, SessionSummary


class CreateAppRequest(BaseModel):
    """What the client sends to POST /api/apps."""

    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=200)
    html: str | None = None  # defaults to the starter page


class UpdateAppRequest(BaseModel):
    """What the client sends to PUT /api/apps/{app_id}. Replaces the whole bundle."""

    model_config = {"extra": "forbid"}

    manifest: dict[str, Any] | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    html: str = ""


class SaveHtmlRequest(BaseModel):
    model_config = {"extra": "forbid"}

    html: str


class SaveManifestRequest(BaseModel):
    model_config = {"extra": "forbid"}

    manifest: dict[str, Any]


class SaveParamsRequest(BaseModel):
    model_config = {"extra": "forbid"}

    params: dict[str, Any]


class AppResponse(BaseModel):
    """One row of the app list."""

    id: str
    name: str
    modified_time: str | None = None

    @classmethod
    def from_summary(cls, app: AppSummary) -> AppResponse:
        return cls(id=app.id, name=app.name, modified_time=app.modified_time)


class AppBundleResponse(BaseModel):
    """A loaded app with its freshness."""

    id: str
    manifest: dict[str, Any] | None
    params: dict[str, Any]
    html: str | None
    sync_time: int | None = None
    synced: str = ""  # "just now", "5m ago", ...

    @classmethod
    def from_bundle(cls, bundle: AppBundle) -> AppBundleResponse:
        return cls(
            id=bundle.id,
            manifest=bundle.manifest.to_dict() if bundle.manifest else None,
            params=bundle.params,
            html=bundle.html,
            sync_time=bundle.sync_time,
            synced=format_sync_time(bundle.sync_time),
        )


class CreateSessionRequest(BaseModel):
    """What the client sends to POST /api/apps/{app_id}/sessions."""

    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=200)


class SaveSessionRequest(BaseModel):
    """What the client sends to PUT a session. Name and creation time are kept."""

    model_config = {"extra": "forbid"}

    data: dict[str, Any]


class SessionResponse(BaseModel):
    """One row of an app's session list."""

    id: str
    name: str
    modified_time: str | None = None

    @classmethod
    def from_summary(cls, session: SessionSummary) -> SessionResponse:
        return cls(id=session.id, name=session.name, modified_time=session.modified_time)


class SessionRecordResponse(BaseModel):
    id: str
    name: str
    created_at: str
    data: dict[str, Any]
    sync_time: int | None = None
    synced: str = ""

    @classmethod
    def from_record(cls, record: SessionRecord) -> SessionRecordResponse:
        return cls(
            id=record.id,
            name=record.name,
            created_at=record.created_at,
            data=record.data,
            sync_time=record.sync_time,
            synced=format_sync_time(record.sync_time),
        )
