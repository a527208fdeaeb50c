"""SQLite embedded database setup with async SQLAlchemy."""

import asyncio
import logging
import os

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)

# Bump when the table layout changes; stored in PRAGMA user_version.
SCHEMA_VERSION = 1


class Database:
    """Owns the async engine and session factory for one SQLite file.

    ``db_path=":memory:"`` keeps everything in a single shared connection.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._session_factory is not None

    async def init(self) -> None:
        """Create the engine and the schema if needed. Safe to call repeatedly."""
        if self._session_factory is not None:
            return

        async with self._lock:
            if self._session_factory is not None:
                return

            if self.db_path == ":memory:":
                engine = create_async_engine(
                    "sqlite+aiosqlite://",
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            else:
                db_dir = os.path.dirname(self.db_path)
                if db_dir:
                    os.makedirs(db_dir, exist_ok=True)
                engine = create_async_engine(f"sqlite+aiosqlite:///{self.db_path}", echo=False)

            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                result = await conn.exec_driver_sql("PRAGMA user_version")
                version = result.scalar() or 0
                if version < SCHEMA_VERSION:
                    await conn.exec_driver_sql(f"PRAGMA user_version = {SCHEMA_VERSION}")
                    logger.info(f"Database schema upgraded {version} -> {SCHEMA_VERSION}")

            self._engine = engine
            self._session_factory = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
            logger.info(f"Database initialized at {self.db_path}")

    def session(self) -> AsyncSession:
        """Open a new session. Must call init() first."""
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory()

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None
