import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.middleware.cors import CORSMiddleware

from firmware_backend.api import coredump, ota, projects, root, webhook
from firmware_backend.core import config
from firmware_backend.core.database import SessionLocal, engine, init_models
from firmware_backend.core.errors import FirmwareServiceError, InternalError
from firmware_backend.schemas.github import IngestionTask
from firmware_backend.services.queue_service import TaskJournal, WorkQueue
from firmware_backend.services.storage_service import LocalBlobStore
from firmware_backend.services.sync_service import make_ingestion_handler

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("firmware-backend")

SHUTDOWN_DRAIN_SECONDS = 30


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": True, "message": message})


def create_app(
    session_factory: async_sessionmaker = SessionLocal,
    store: Optional[LocalBlobStore] = None,
    queue: Optional[WorkQueue] = None,
    public_base_url: str = config.PUBLIC_BASE_URL,
) -> FastAPI:
    app = FastAPI(
        title="Firmware OTA Service",
        description="Firmware OTA, storage, and diagnostic endpoints.",
        version="1.0.0",
    )

    app.state.session_factory = session_factory
    app.state.store = store if store is not None else LocalBlobStore(config.FIRMWARE_STORAGE_PATH)
    if queue is None:
        queue = WorkQueue(journal=TaskJournal(session_factory, decode=IngestionTask.model_validate_json))
    app.state.queue = queue
    # tables are created on the engine behind the session factory
    bind = session_factory.kw.get("bind") or engine
    app.state.public_base_url = public_base_url.rstrip("/")

    # ============== ERRORS ==============

    @app.exception_handler(FirmwareServiceError)
    async def service_error_handler(request: Request, exc: FirmwareServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error for {request.method} {request.url.path}: {exc.errors()}")
        return _error(400, "Invalid request")

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error for {request.method} {request.url.path}")
        err = InternalError(str(exc) or "Internal error")
        return _error(err.status_code, err.message)

    # ============== ROUTES ==============

    app.include_router(root.router)
    app.include_router(ota.router)
    app.include_router(webhook.router)
    app.include_router(coredump.router)
    app.include_router(projects.router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============== LIFECYCLE ==============

    @app.on_event("startup")
    async def start_ingestion():
        await init_models(bind)
        await app.state.queue.replay()
        handler = make_ingestion_handler(app.state.session_factory, app.state.store)
        app.state.queue.start(handler, workers=config.QUEUE_WORKERS)

    @app.on_event("shutdown")
    async def stop_ingestion():
        queue: WorkQueue = app.state.queue
        await queue.stop()
        handler = make_ingestion_handler(app.state.session_factory, app.state.store)
        try:
            await queue.drain(handler, timeout=SHUTDOWN_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.error(f"Shutdown with {len(queue)} ingestion task(s) still queued, left for replay")
        await bind.dispose()

    return app


app = create_app()
