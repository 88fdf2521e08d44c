"""Credential models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SetTokenRequest(BaseModel):
    """Values from the OAuth implicit-flow redirect fragment."""

    model_config = {"extra": "forbid"}

    access_token: str = Field(min_length=1)
    expires_in: int = Field(gt=0)


class AuthStatusResponse(BaseModel):
    signed_in: bool
    expires_at: float | None = None
