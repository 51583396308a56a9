"""
Chest of Notes backend.

Builds the FastAPI application around a NotesContainer: the notes router under
``{ROUTE_PREFIX}/mongo``, the notification stream under
``{ROUTE_PREFIX}/notifications`` and a root ``/health`` probe. Startup runs the
recovery scan before any request is accepted; shutdown drains in-flight
uploads.

Run with ``python app.py`` or ``uvicorn app:create_app --factory``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from error_monitoring import configure_logging
from media_utils import ffmpeg_available
from services import notes_router, notification_router
from services.container import NotesContainer, build_container, get_container
from services.errors import NotesError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container: NotesContainer = app.state.container
    settings = container.settings

    container.db.initialize_database()
    if not ffmpeg_available(settings.ffmpeg_path):
        logger.warning(f"ffmpeg not found at {settings.ffmpeg_path!r}; media uploads will fail")

    report = await container.recovery.run()
    app.state.recovery_report = report
    logger.info(f"Chest of Notes ready on prefix {settings.route_prefix or '/'}")

    yield

    logger.info(f"Shutting down with {container.supervisor.in_flight} upload(s) in flight")
    await container.supervisor.shutdown(settings.shutdown_drain_seconds)
    container.close()


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotesError)
    async def notes_error_handler(request: Request, exc: NotesError):
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": "Error", "data": exc.message, "code": exc.code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return PlainTextResponse("Not found", status_code=404)
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": "Error", "data": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        container: Optional[NotesContainer] = getattr(request.app.state, "container", None)
        if container is not None:
            container.error_monitor.capture_error(exc, "api", context={"path": request.url.path})
        return JSONResponse(
            status_code=500,
            content={"status": "Error", "data": "Internal server error", "code": "INTERNAL_ERROR"},
        )


def create_app(
    container: Optional[NotesContainer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create the application; tests pass their own container."""
    if container is None:
        settings = settings or get_settings()
        configure_logging(settings.log_level, settings.error_log_file)
        container = build_container(settings)
    settings = container.settings

    app = FastAPI(
        title="Chest of Notes",
        description="Notes with asynchronously transcoded audio and video",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "HEAD", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Accept-Ranges", "Content-Range", "Content-Length"],
    )

    app.include_router(notes_router.router, prefix=f"{settings.route_prefix}/mongo")
    app.include_router(notification_router.router, prefix=settings.route_prefix)
    register_exception_handlers(app)

    @app.get("/health")
    async def health(container: NotesContainer = Depends(get_container)):
        database = await asyncio.to_thread(container.store.health_check)
        errors = container.error_monitor.health_check()
        healthy = database.get("connection_test", False) and errors["status"] != "critical"
        return {
            "status": "healthy" if healthy else "unhealthy",
            "database": database,
            "uploads_in_flight": container.supervisor.in_flight,
            "subscribers": container.bus.subscriber_count,
            "errors": errors,
            "error_summary": container.error_monitor.get_error_summary(hours=24),
            "recent_errors": container.error_monitor.get_recent_errors(limit=10),
        }

    return app


def serve() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.error_log_file)
    uvicorn.run(
        "app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    serve()
