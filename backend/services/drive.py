"""Google Drive v3 implementation of the remote store."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from backend import config
from engine.core.remote import (
    AuthenticationMissing,
    DocumentRef,
    RemoteStore,
    RemoteStoreError,
    TokenProvider,
)

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
_FILE_FIELDS = "id,name,modifiedTime,mimeType"


def _quote(value: str) -> str:
    """Escape a literal for a Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _to_ref(d: dict[str, Any]) -> DocumentRef:
    return DocumentRef(
        id=d["id"],
        name=d.get("name", ""),
        modified_time=d.get("modifiedTime"),
        is_folder=d.get("mimeType") == FOLDER_MIME_TYPE,
    )


class DriveClient(RemoteStore):
    """HTTP client for the Drive v3 files API.

    Every call reads a bearer token from the token provider first and fails
    with AuthenticationMissing before touching the network if there is none.
    Failures are raised, never retried.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        client: httpx.AsyncClient | None = None,
        api_url: str | None = None,
        upload_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._api_url = (api_url or config.settings.DRIVE_API_URL).rstrip("/")
        self._upload_url = (upload_url or config.settings.DRIVE_UPLOAD_URL).rstrip("/")
        if timeout is None:
            timeout = config.settings.REMOTE_TIMEOUT_SECONDS
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- transport --

    def _headers(self) -> dict[str, str]:
        token = self._token_provider()
        if not token:
            raise AuthenticationMissing()
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}))
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("drive: %s %s failed: %s", method, url, e)
            raise RemoteStoreError(f"Drive request failed: {e}") from e

        if response.is_success:
            return response

        message = f"Drive API error: {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            message = body["error"].get("message") or message

        logger.warning("drive: %s %s -> %d %s", method, url, response.status_code, message)
        raise RemoteStoreError(message, status_code=response.status_code)

    async def _query(self, q: str, order_by: str | None = None) -> list[DocumentRef]:
        params = {"q": q, "fields": f"files({_FILE_FIELDS})"}
        if order_by:
            params["orderBy"] = order_by
        response = await self._request("GET", f"{self._api_url}/files", params=params)
        return [_to_ref(d) for d in response.json().get("files", [])]

    # -- RemoteStore --

    async def find(self, parent_id: str | None, name: str) -> DocumentRef | None:
        clauses = [f"name='{_quote(name)}'", "trashed=false"]
        if parent_id is not None:
            clauses.insert(0, f"'{_quote(parent_id)}' in parents")
        else:
            clauses.append(f"mimeType='{FOLDER_MIME_TYPE}'")
        files = await self._query(" and ".join(clauses))
        return files[0] if files else None

    async def create(self, parent_id: str | None, name: str, content: str) -> DocumentRef:
        metadata: dict[str, Any] = {"name": name}
        if parent_id is not None:
            metadata["parents"] = [parent_id]
        response = await self._request(
            "POST",
            f"{self._upload_url}/files",
            params={"uploadType": "multipart", "fields": _FILE_FIELDS},
            files={
                "metadata": (None, json.dumps(metadata), "application/json"),
                "file": (name, content.encode("utf-8"), "text/plain"),
            },
        )
        return _to_ref(response.json())

    async def create_folder(self, parent_id: str | None, name: str) -> DocumentRef:
        metadata: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id is not None:
            metadata["parents"] = [parent_id]
        response = await self._request(
            "POST",
            f"{self._api_url}/files",
            params={"fields": _FILE_FIELDS},
            json=metadata,
        )
        ref = _to_ref(response.json())
        return DocumentRef(id=ref.id, name=ref.name or name, modified_time=ref.modified_time, is_folder=True)

    async def read(self, ref: DocumentRef) -> str:
        response = await self._request("GET", f"{self._api_url}/files/{ref.id}", params={"alt": "media"})
        return response.text

    async def update(self, ref: DocumentRef, content: str) -> None:
        await self._request(
            "PATCH",
            f"{self._upload_url}/files/{ref.id}",
            params={"uploadType": "media"},
            headers={"Content-Type": "text/plain"},
            content=content.encode("utf-8"),
        )

    async def set_trashed(self, ref: DocumentRef) -> None:
        await self._request("PATCH", f"{self._api_url}/files/{ref.id}", json={"trashed": True})

    async def list(self, parent_id: str | None, *, folders_only: bool = False) -> list[DocumentRef]:
        clauses = [f"'{_quote(parent_id or 'root')}' in parents", "trashed=false"]
        if folders_only:
            clauses.append(f"mimeType='{FOLDER_MIME_TYPE}'")
        return await self._query(" and ".join(clauses), order_by="modifiedTime desc")
