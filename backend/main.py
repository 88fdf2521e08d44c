"""
tinyapp FastAPI application.

Entry point for the host server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.auth import TokenStore
from backend.config import settings
from backend.routes import apps as app_routes
from backend.routes import auth_routes
from backend.routes import runner as runner_routes
from backend.routes import sessions as session_routes
from backend.services.drive import DriveClient
from engine.core.cache import JsonFileCacheStorage, LocalCache
from engine.core.remote import AuthenticationMissing, RemoteStore, RemoteStoreError
from engine.core.sync import SyncCoordinator

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def register_error_handlers(app: FastAPI) -> None:
    """
    Map core errors to JSON responses.

    AuthenticationMissing → 401. RemoteStoreError → 404 when the store said
    404, otherwise 502 with the store's message.
    """

    @app.exception_handler(AuthenticationMissing)
    async def authentication_missing_handler(request: Request, exc: AuthenticationMissing) -> JSONResponse:
        return JSONResponse(status_code=401, content={"detail": exc.message})

    @app.exception_handler(RemoteStoreError)
    async def remote_store_error_handler(request: Request, exc: RemoteStoreError) -> JSONResponse:
        status_code = 404 if exc.status_code == 404 else 502
        logger.warning(
            "remote store error on %s %s: %s (status=%s)",
            request.method,
            request.url.path,
            exc.message,
            exc.status_code,
        )
        return JSONResponse(status_code=status_code, content={"detail": exc.message})


def create_app(
    remote: RemoteStore | None = None,
    cache: LocalCache | None = None,
    token_store: TokenStore | None = None,
) -> FastAPI:
    """
    Build the host application.

    Collaborators default to the Drive client, the on-disk cache file and an
    empty token store; tests pass in-memory ones.
    """
    token_store = token_store or TokenStore()
    owns_remote = remote is None
    if remote is None:
        remote = DriveClient(token_provider=token_store.get_token)
    if cache is None:
        cache = LocalCache(JsonFileCacheStorage(settings.cache_file), app_capacity=settings.APP_CACHE_MAX)
    sync = SyncCoordinator(remote, cache, root_folder_name=settings.ROOT_FOLDER_NAME)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: log the environment. Shutdown: close the Drive HTTP client.
        """
        logger.info("tinyapp host starting (environment=%s)", settings.ENVIRONMENT)
        yield
        if owns_remote and isinstance(remote, DriveClient):
            await remote.aclose()
            logger.info("Drive client closed")

    app = FastAPI(
        title="tinyapp",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.token_store = token_store
    app.state.remote = remote
    app.state.sync = sync

    register_error_handlers(app)

    # Register routes
    app.include_router(auth_routes.router)
    app.include_router(app_routes.router)
    app.include_router(session_routes.router)
    app.include_router(runner_routes.router)

    @app.get("/health")
    async def health():
        """Health check endpoint for uptime monitoring."""
        return {"status": "ok"}

    return app


configure_logging()
app = create_app()
