"""
FastAPI application factory and configuration.
"""
import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pingchat.core import metrics as metrics_store
from pingchat.core.config import Settings, get_settings
from pingchat.core.database import (
    check_db_connection,
    create_engine_for,
    init_db,
    init_queue_db,
    make_session_factory,
)
from pingchat.core.logging import setup_logging, get_logger
from pingchat.api import chats, health, metrics, phone, pings
from pingchat.api.errors import register_error_handlers
from pingchat.api.metrics import MetricsMiddleware
from pingchat.services.container import build_services
from pingchat.services.network import ConnectivityWatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger = get_logger(__name__)
    logger.info("Starting application...")
    settings: Settings = app.state.settings

    # Engines are created here so they bind to the serving event loop
    engine = create_engine_for(settings.database_url, echo=settings.debug)
    queue_engine = create_engine_for(settings.offline_queue_url, echo=settings.debug)
    await init_db(engine)
    await init_queue_db(queue_engine)
    logger.info("Database initialized", extra={"extra_data": {"database_url": settings.database_url}})

    services = build_services(
        settings,
        make_session_factory(engine),
        make_session_factory(queue_engine),
    )
    app.state.engine = engine
    app.state.services = services
    app.state.connectivity = ConnectivityWatcher(
        services.network,
        lambda: check_db_connection(engine),
        interval_seconds=settings.connectivity_check_interval_seconds,
        drain=services.offline_queue.drain,
    )
    watch_task = asyncio.create_task(app.state.connectivity.run())

    metrics_store.set_startup_time()

    yield

    logger.info("Shutting down application...")
    watch_task.cancel()
    with suppress(asyncio.CancelledError):
        await watch_task
    app.state.connectivity = None
    app.state.services = None
    await queue_engine.dispose()
    await engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    setup_logging(settings)
    logger = get_logger(__name__)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Marketplace pings, deduplicated conversations and gated phone disclosure",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)

    register_error_handlers(app)

    app.include_router(pings.router)
    app.include_router(chats.router)
    app.include_router(phone.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    logger.info(
        "Application created",
        extra={
            "extra_data": {
                "app_name": settings.app_name,
                "version": settings.app_version,
                "debug": settings.debug,
            }
        }
    )

    return app


# Create the application instance
app = create_app()
