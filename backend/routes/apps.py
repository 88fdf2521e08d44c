"""App routes: list, create, load, save, remove."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status

from backend.models.app import (
    AppBundleResponse,
    AppResponse,
    CreateAppRequest,
    SaveHtmlRequest,
    SaveManifestRequest,
    SaveParamsRequest,
    UpdateAppRequest,
)
from engine.core.sync import SyncCoordinator
from engine.core.types import AppBundle, Manifest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/apps", tags=["apps"])


def get_sync(request: Request) -> SyncCoordinator:
    """FastAPI dependency: the app's SyncCoordinator."""
    return request.app.state.sync


@router.get("", status_code=200)
async def list_apps(force: bool = False, sync: SyncCoordinator = Depends(get_sync)) -> list[AppResponse]:
    """List apps, most recently modified first. `force` bypasses the cache."""
    apps = await sync.list_apps(force_refresh=force)
    return [AppResponse.from_summary(a) for a in apps]


@router.post("", status_code=201)
async def create_app(req: CreateAppRequest, sync: SyncCoordinator = Depends(get_sync)) -> AppResponse:
    """Create an app with the starter page (or the given HTML) and an empty sessions folder."""
    app = await sync.create_app(req.name, req.html)
    return AppResponse.from_summary(app)


@router.get("/{app_id}", status_code=200)
async def load_app(app_id: str, force: bool = False, sync: SyncCoordinator = Depends(get_sync)) -> AppBundleResponse:
    """Load an app bundle, from the cache unless `force` is set."""
    bundle = await sync.load_app(app_id, force_refresh=force)
    return AppBundleResponse.from_bundle(bundle)


@router.put("/{app_id}", status_code=204)
async def save_app(app_id: str, req: UpdateAppRequest, sync: SyncCoordinator = Depends(get_sync)) -> Response:
    """Replace html, manifest and params."""
    bundle = AppBundle(
        id=app_id,
        manifest=Manifest.from_dict(req.manifest) if req.manifest is not None else None,
        params=req.params,
        html=req.html,
    )
    await sync.save_app(app_id, bundle)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{app_id}/html", status_code=204)
async def save_html(app_id: str, req: SaveHtmlRequest, sync: SyncCoordinator = Depends(get_sync)) -> Response:
    await sync.save_app_html(app_id, req.html)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{app_id}/manifest", status_code=204)
async def save_manifest(app_id: str, req: SaveManifestRequest, sync: SyncCoordinator = Depends(get_sync)) -> Response:
    await sync.save_manifest(app_id, Manifest.from_dict(req.manifest))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{app_id}/params", status_code=204)
async def save_params(app_id: str, req: SaveParamsRequest, sync: SyncCoordinator = Depends(get_sync)) -> Response:
    await sync.save_params(app_id, req.params)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{app_id}", status_code=204)
async def remove_app(app_id: str, sync: SyncCoordinator = Depends(get_sync)) -> Response:
    """Move the app to the remote trash and clear everything cached under it."""
    await sync.remove_app(app_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
