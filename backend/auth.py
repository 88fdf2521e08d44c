"""
Credentials for the remote store.

Holds the bearer token obtained through the OAuth implicit flow. The redirect
itself happens in the browser; the host only receives the fragment values.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from fastapi import Request

from backend import config

logger = logging.getLogger(__name__)


class TokenStore:
    """
    In-process bearer token with an expiry.

    get_token() treats a token as expired `expiry_buffer` seconds early and
    forgets it, so callers never start a request with a token about to lapse.
    """

    def __init__(
        self,
        expiry_buffer: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if expiry_buffer is None:
            expiry_buffer = config.settings.TOKEN_EXPIRY_BUFFER_SECONDS
        self._buffer = expiry_buffer
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float | None = None

    def set_token(self, access_token: str, expires_in: int) -> None:
        """
        Store a token.

        Args:
            access_token: Bearer token from the OAuth fragment
            expires_in: Lifetime in seconds, as granted
        """
        self._token = access_token
        self._expires_at = self._clock() + expires_in
        logger.info("auth: token stored, expires_in=%ds", expires_in)

    def get_token(self) -> str | None:
        """Current token, or None when absent or within the expiry buffer."""
        if self._token is None or self._expires_at is None:
            return None
        if self._clock() > self._expires_at - self._buffer:
            logger.info("auth: token expired")
            self.clear()
            return None
        return self._token

    @property
    def is_signed_in(self) -> bool:
        return self.get_token() is not None

    @property
    def expires_at(self) -> float | None:
        return self._expires_at

    def clear(self) -> None:
        self._token = None
        self._expires_at = None


def get_token_store(request: Request) -> TokenStore:
    """FastAPI dependency: the app's TokenStore."""
    return request.app.state.token_store

