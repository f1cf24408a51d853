"""Main entry point for the dchannel service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from dchannel.api.v1 import (
    channels_router,
    directory_router,
    feed_router,
    identity_router,
    listen_router,
    system_router,
)
from dchannel.core.errors import DChannelError
from dchannel.core.settings import settings
from dchannel.db.session import SessionLocal, create_tables
from dchannel.schemas.common import Envelope
from dchannel.services.directory import DirectoryStore
from dchannel.services.identity import IdentityContext, IdentityStore
from dchannel.services.notifications import DesktopNotifier
from dchannel.services.poller import PollerRegistry
from dchannel.services.publisher import FeedPublisher
from dchannel.services.reader import FeedReader
from dchannel.services.storage import build_backends

logger = logging.getLogger(__name__)

HTTP_UNPROCESSABLE_ENTITY = 422

# Initialize FastAPI app
app = FastAPI(
    title="dchannel API",
    description="Chained, selectively encrypted feeds over content-addressed storage",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(feed_router, prefix="/api/v1")
app.include_router(identity_router, prefix="/api/v1")
app.include_router(directory_router, prefix="/api/v1")
app.include_router(channels_router, prefix="/api/v1")
app.include_router(listen_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.exception_handler(DChannelError)
async def dchannel_error_handler(request: Request, exc: DChannelError) -> JSONResponse:
    """Translate engine failures into the failure envelope."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=Envelope.fail(exc.to_dict()).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(
        status_code=HTTP_UNPROCESSABLE_ENTITY,
        content=Envelope.fail(
            {"error": "validation_error", "stage": None, "message": message}
        ).model_dump(),
    )


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.on_event("startup")
async def on_startup() -> None:
    _configure_logging()
    create_tables()

    objects, naming = build_backends(settings)
    identity = IdentityContext(IdentityStore(settings.identity_file, settings.scrypt_work_factor))
    directory = DirectoryStore(SessionLocal)
    notifier = DesktopNotifier(app_name=settings.app_name) if settings.desktop_notifications else None

    app.state.objects = objects
    app.state.naming = naming
    app.state.identity = identity
    app.state.directory = directory
    app.state.publisher = FeedPublisher(identity, directory, objects, naming, settings)
    app.state.reader = FeedReader(identity, objects, naming, settings)
    app.state.pollers = PollerRegistry(directory, naming, objects, settings, notifier)
    logger.info("dchannel started with %s backend", settings.store_backend)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    pollers: PollerRegistry | None = getattr(app.state, "pollers", None)
    if pollers:
        await pollers.close_all()
    publisher: FeedPublisher | None = getattr(app.state, "publisher", None)
    if publisher:
        await publisher.drain()
    objects = getattr(app.state, "objects", None)
    naming = getattr(app.state, "naming", None)
    if objects is not None:
        await objects.close()
    if naming is not None and naming is not objects:
        await naming.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("dchannel.main:app", host="127.0.0.1", port=8000, reload=settings.debug)
