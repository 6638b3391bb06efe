from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mediagate.api.v1 import get_api_router
from mediagate.core.config import get_settings
from mediagate.core.errors import MediaError
from mediagate.core.gate import ConcurrencyGate
from mediagate.core.logging import configure_logging, get_logger, resolve_level
from mediagate.core.storage import get_storage
from mediagate.media.cache_store import CacheStore
from mediagate.media.dispatcher import ConversionDispatcher
from mediagate.media.runner import ToolRunner, run_tool
from mediagate.services.media_service import MediaService

logger = get_logger(component="app")


async def media_error_handler(request: Request, exc: MediaError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log("media_error", path=request.url.path, error=exc.code, status=exc.status_code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def create_app(*, runner: Optional[ToolRunner] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(level=resolve_level(settings.log_level))
    runner = runner or run_tool
    storage = get_storage(settings)
    cache = CacheStore.from_settings(settings)
    gate = ConcurrencyGate(settings.max_concurrent_conversions)
    dispatcher = ConversionDispatcher(settings, runner=runner)
    media_service = MediaService(settings, storage, cache, gate, dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.storage = storage
        app.state.runner = runner
        app.state.gate = gate
        app.state.media_service = media_service
        logger.info(
            "app_started",
            environment=settings.environment,
            storage_root=str(settings.storage_root),
            cache_root=str(settings.cache_root),
            max_concurrent_conversions=gate.max_concurrency,
        )
        try:
            yield
        finally:
            await media_service.drain()
            logger.info("app_stopped")

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.add_exception_handler(MediaError, media_error_handler)
    app.include_router(get_api_router())
    return app


app = create_app()


__all__ = ["app", "create_app"]
