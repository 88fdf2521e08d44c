"""
Pydantic models for the tinyapp host API.

All request and response shapes defined here. No imports from routes or services.
"""

from backend.models.app import (
    AppBundleResponse,
    AppResponse,
    CreateAppRequest,
    CreateSessionRequest,
    SaveHtmlRequest,
    SaveManifestRequest,
    SaveParamsRequest,
    SaveSessionRequest,
    SessionRecordResponse,
    SessionResponse,
    UpdateAppRequest,
)
from backend.models.token import AuthStatusResponse, SetTokenRequest

__all__ = [
    # App models
    "CreateAppRequest",
    "UpdateAppRequest",
    "SaveHtmlRequest",
    "SaveManifestRequest",
    "SaveParamsRequest",
    "AppResponse",
    "AppBundleResponse",
    # Session models
    "CreateSessionRequest",
    "SaveSessionRequest",
    "SessionResponse",
    "SessionRecordResponse",
    # Credential models
    "SetTokenRequest",
    "AuthStatusResponse",
]
