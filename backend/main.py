"""FastAPI application entry point for the task tracker backend.

This module builds the FastAPI application with its middleware, routers and
the realtime components shared by the REST and websocket paths.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.accounts import auth_router
from api.routes import router
from api.websocket import websocket_router
from auth import TokenVerifier
from config import Settings, configure_logging, settings
from metrics import DeliveryMetrics
from models.database import TaskStore
from rate_limiter import RequestRateLimiter
from realtime import EventBroadcaster, RoomRouter, SessionRegistry

logger = structlog.get_logger(__name__)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        app_settings: Settings to use; defaults to the module-level settings.

    Returns:
        The configured application. Its components are created on startup
        and exposed on ``app.state``.
    """
    app_settings = app_settings or settings
    configure_logging(app_settings.log_level, app_settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager for startup and shutdown events.

        Args:
            app: The FastAPI application instance.

        Yields:
            None during application runtime.
        """
        logger.info(
            "application_starting",
            backend_port=app_settings.backend_port,
            log_level=app_settings.log_level,
            database_path=app_settings.database_path,
        )

        store = TaskStore(app_settings.database_path)
        await store.init()

        verifier = TokenVerifier(
            secret=app_settings.jwt_secret,
            algorithm=app_settings.jwt_algorithm,
            ttl_seconds=app_settings.access_token_ttl_minutes * 60,
        )
        registry = SessionRegistry(verifier, send_queue_size=app_settings.ws_send_queue_size)
        room_router = RoomRouter()
        broadcaster = EventBroadcaster(room_router, registry, metrics=DeliveryMetrics())

        app.state.settings = app_settings
        app.state.store = store
        app.state.token_verifier = verifier
        app.state.registry = registry
        app.state.router = room_router
        app.state.broadcaster = broadcaster
        app.state.rate_limiter = RequestRateLimiter(
            max_requests=app_settings.rate_limit_requests,
            window_seconds=app_settings.rate_limit_window_seconds,
        )

        logger.info("resources_initialized")
        logger.info("application_started")

        yield

        logger.info("application_shutting_down")

        # Wake every writer so open websocket handlers can finish.
        for connection_id in list(registry.connection_ids()):
            room_router.disconnect(connection_id)
            registry.remove(connection_id)

        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Task Tracker Realtime API",
        description="Collaborative task tracker backend: project and task REST API "
        "with per-project realtime event rooms over WebSocket.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    # Include HTTP routes
    app.include_router(auth_router, tags=["auth"])
    app.include_router(router, tags=["projects", "tasks"])

    # Include WebSocket routes
    app.include_router(websocket_router, tags=["websocket"])

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {
            "message": "Task Tracker Realtime API",
            "docs": "/docs",
            "health": "/api/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
