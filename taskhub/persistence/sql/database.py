"""
Async engine and session management for the SQL persistence backend.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ...config.models import DatabaseConfig
from ...exceptions import ConfigurationError
from ...structured_logging.enhanced_logging_config import get_logger
from .models import Base

logger = get_logger(__name__)


class DatabaseManager:
    """
    Owns the async engine and session maker for one database URL.

    Constructed by the application container; engine creation is lazy so the
    engine is bound to the event loop that first uses it.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        if config.is_memory:
            raise ConfigurationError("DatabaseManager requires a SQL database URL", config_key="database.url")
        self._config = config
        self.database_url = config.url
        self.engine: AsyncEngine | None = None
        self.session_maker: async_sessionmaker[AsyncSession] | None = None

    def _initialize(self) -> None:
        pool_kwargs: dict[str, Any] = {}
        if self.database_url.startswith("postgresql"):
            pool_kwargs.update(
                {
                    "pool_size": self._config.pool_size,
                    "max_overflow": self._config.max_overflow,
                    "pool_timeout": self._config.pool_timeout,
                }
            )

        self.engine = create_async_engine(self.database_url, echo=False, pool_pre_ping=True, **pool_kwargs)
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database engine created", driver=self.database_url.split("://", 1)[0])

    def get_engine(self) -> AsyncEngine:
        if self.engine is None:
            self._initialize()
        assert self.engine is not None, "Database engine not initialized"
        return self.engine

    def get_session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self.session_maker is None:
            self._initialize()
        assert self.session_maker is not None, "Session maker not initialized"
        return self.session_maker

    async def create_tables(self) -> None:
        """Create any missing tables. Used for SQLite deployments and tests."""
        async with self.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")

    async def ping(self) -> bool:
        async with self.get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database engine disposed")
        self.engine = None
        self.session_maker = None
