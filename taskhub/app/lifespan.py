"""Application lifecycle management for TaskHub.

Startup initializes the ApplicationContainer held on app.state and starts
its background tasks; shutdown cancels them and releases persistence.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..container import ApplicationContainer
from ..structured_logging.enhanced_logging_config import get_logger, setup_enhanced_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Uses the container create_app() placed on app.state, so tests can inject
    one with a seeded persistence store.
    """
    container: ApplicationContainer = getattr(app.state, "container", None) or ApplicationContainer()
    app.state.container = container

    await container.initialize()
    assert container.config is not None
    setup_enhanced_logging(container.config.logging)
    container.start_background_tasks()
    logger.info("TaskHub server started")

    try:
        yield
    finally:
        logger.info("Shutting down TaskHub server...")
        try:
            await container.shutdown()
        except asyncio.CancelledError:
            logger.warning("Shutdown interrupted")
            raise
        logger.info("TaskHub server shutdown complete")
