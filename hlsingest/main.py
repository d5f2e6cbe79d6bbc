from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hlsingest.api.v1 import get_api_router
from hlsingest.core.config import get_settings
from hlsingest.core.db import create_engine, create_session_factory
from hlsingest.core.errors import IngestError
from hlsingest.core.logging import configure_logging, get_logger
from hlsingest.core.storage import get_storage

logger = get_logger(component="api")


async def ingest_error_handler(request: Request, exc: IngestError) -> JSONResponse:
    """Render pipeline failures as ``{"detail": {"kind", "message", ...}}``."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log("ingest_request_failed", path=request.url.path, kind=exc.kind, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    storage = get_storage(settings)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.storage = storage
        app.state.engine = engine
        app.state.session_factory = session_factory
        settings.staging_root.mkdir(parents=True, exist_ok=True)
        settings.jobs_root.mkdir(parents=True, exist_ok=True)
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )

    app.add_exception_handler(IngestError, ingest_error_handler)
    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
