"""
FastAPI application factory for TaskHub.

This module handles FastAPI app creation, middleware configuration,
and router registration.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..api.monitoring import monitoring_router
from ..api.notifications import notification_router
from ..api.real_time import realtime_router
from ..auth.endpoints import auth_router
from ..config import get_config
from ..container import ApplicationContainer
from ..error_handlers import register_error_handlers
from ..structured_logging.enhanced_logging_config import get_logger
from .lifespan import lifespan

logger = get_logger(__name__)


def create_app(container: ApplicationContainer | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        container: Pre-built container (tests inject one with seeded persistence)

    Returns:
        FastAPI: The configured application; services start in its lifespan
    """
    if container is None:
        container = ApplicationContainer(config=get_config())
    config = container.config or get_config()
    container.config = config

    app = FastAPI(
        title="TaskHub API",
        description="Real-time collaboration core: rooms, messaging, presence and notifications",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container

    cors = config.cors
    logger.info(
        "CORS configuration",
        allow_origins=cors.allow_origins,
        allow_methods=cors.allow_methods,
        allow_credentials=cors.allow_credentials,
        max_age=cors.max_age,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.allow_origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
        max_age=cors.max_age,
    )

    register_error_handlers(app)

    app.include_router(auth_router, prefix="/api")
    app.include_router(notification_router)
    app.include_router(realtime_router)
    app.include_router(monitoring_router)

    return app
