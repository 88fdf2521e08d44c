"""Credential routes: hand the host a bearer token, drop it, check it."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from backend.auth import TokenStore, get_token_store
from backend.models.token import AuthStatusResponse, SetTokenRequest

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/token", status_code=200)
async def set_token(req: SetTokenRequest, tokens: TokenStore = Depends(get_token_store)) -> AuthStatusResponse:
    """
    Store the access token from the OAuth redirect fragment.

    The browser parses `#access_token=...&expires_in=...` and posts both values here.
    """
    tokens.set_token(req.access_token, req.expires_in)
    return AuthStatusResponse(signed_in=tokens.is_signed_in, expires_at=tokens.expires_at)


@router.delete("/token", status_code=204)
async def sign_out(tokens: TokenStore = Depends(get_token_store)) -> Response:
    tokens.clear()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/status", status_code=200)
async def auth_status(tokens: TokenStore = Depends(get_token_store)) -> AuthStatusResponse:
    signed_in = tokens.is_signed_in
    return AuthStatusResponse(signed_in=signed_in, expires_at=tokens.expires_at if signed_in else None)
