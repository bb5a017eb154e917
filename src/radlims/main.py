"""RadLIMS FastAPI Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from radlims.api.errors import workflow_error_handler
from radlims.api.v1.labs import router as labs_router
from radlims.api.v1.samples import router as samples_router
from radlims.api.v1.websocket import manager as ws_manager
from radlims.api.v1.websocket import router as websocket_router
from radlims.core.config import get_settings
from radlims.core.events import event_bus
from radlims.core.live_view import LiveViewSynchronizer
from radlims.core.logging import clear_log_context, configure_logging
from radlims.core.workflow.errors import WorkflowError
from radlims.db.database import get_database

settings = get_settings()
configure_logging(log_format=settings.log_format, log_level=settings.log_level)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("radlims_starting", version=settings.app_version)
    if not settings.jwt_secret:
        logger.warning(
            "jwt_secret_unset", detail="RADLIMS_JWT_SECRET is empty; every token is rejected"
        )

    db = get_database()

    # Live view: committed samples flow from the event bus to WebSocket viewers
    synchronizer = LiveViewSynchronizer(
        event_bus, db.session_factory, queue_size=settings.live_view_queue_size
    )
    synchronizer.start()
    ws_manager.configure(
        synchronizer,
        heartbeat_interval=settings.ws_heartbeat_interval,
        heartbeat_timeout=settings.ws_heartbeat_timeout,
    )
    await ws_manager.start()

    app.state.event_bus = event_bus
    app.state.live_view = synchronizer

    logger.info("radlims_started")

    yield

    logger.info("radlims_stopping")

    await ws_manager.stop()
    await synchronizer.stop()

    # Wait for pending event handlers to complete
    await event_bus.shutdown()

    await db.dispose()

    logger.info("radlims_stopped")


app = FastAPI(
    title="RadLIMS",
    description="Sample lifecycle workflow for marine radionuclide laboratories",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(WorkflowError, workflow_error_handler)


@app.middleware("http")
async def reset_log_context(request: Request, call_next):
    clear_log_context()
    return await call_next(request)


app.include_router(labs_router)
app.include_router(samples_router)
app.include_router(websocket_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "name": "RadLIMS",
        "version": settings.app_version,
        "docs": "/docs",
    }
