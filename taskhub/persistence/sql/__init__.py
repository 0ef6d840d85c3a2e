"""SQLAlchemy-backed persistence (PostgreSQL via asyncpg, SQLite via aiosqlite)."""

from .database import DatabaseManager
from .gateway import SqlPersistence

__all__ = ["DatabaseManager", "SqlPersistence"]
