"""FastAPI application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool

from wabridge.config import Settings, load_settings
from wabridge.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from wabridge.observability.logging import get_logger, set_log_level
from wabridge.sessions.registry import ConnectionRegistry

from .routes import admin, connections, status

logger = get_logger(__name__)


def create_app(
    registry: ConnectionRegistry,
    settings: Settings | None = None,
    *,
    reconnect_on_startup: bool = True,
) -> FastAPI:
    """Create the HTTP command surface around ``registry``.

    Args:
        registry: Connection registry built with the session engine.
        settings: Settings shown by /status. Loaded from env if None.
        reconnect_on_startup: Resume stored sessions when the app starts.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or load_settings()
    set_log_level(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if reconnect_on_startup:
            await run_in_threadpool(registry.reconnect_all)
        yield
        logger.info("shutting down connections")
        await run_in_threadpool(registry.shutdown)

    app = FastAPI(
        title="wabridge",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.settings = settings

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(status.router)
    app.include_router(connections.router)
    app.include_router(admin.router)

    return app
