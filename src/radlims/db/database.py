"""Database configuration and session management."""

import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from radlims.db.models import Base

logger = structlog.get_logger(__name__)


class DatabaseConfig:
    """Database configuration and session factory."""

    def __init__(
        self,
        database_url: str = "sqlite+aiosqlite:///./radlims.db",
        echo: bool = False,
    ) -> None:
        """Initialize database configuration.

        Args:
            database_url: SQLAlchemy database URL (async driver required)
            echo: Enable SQL query logging
        """
        self.database_url = database_url
        self.echo = echo
        url = make_url(database_url)
        self.is_sqlite = url.get_backend_name() == "sqlite"
        self.is_memory = self.is_sqlite and url.database in (None, "", ":memory:")
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create async engine."""
        if self._engine is None:
            engine_kwargs: dict = {"echo": self.echo}

            if self.is_memory:
                # One shared connection, otherwise every checkout sees an empty database
                engine_kwargs["poolclass"] = StaticPool
                engine_kwargs["connect_args"] = {"check_same_thread": False}
            elif self.is_sqlite:
                engine_kwargs["poolclass"] = NullPool
            else:
                engine_kwargs["pool_size"] = 10
                engine_kwargs["max_overflow"] = 20
                engine_kwargs["pool_recycle"] = 3600
                engine_kwargs["pool_pre_ping"] = True

            self._engine = create_async_engine(self.database_url, **engine_kwargs)

            if self.is_sqlite:

                @event.listens_for(self._engine.sync_engine, "connect")
                def set_sqlite_pragma(dbapi_conn, connection_record):
                    """Enable WAL, foreign keys and a lock wait on every connection."""
                    cursor = dbapi_conn.cursor()
                    if not self.is_memory:
                        cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.execute("PRAGMA busy_timeout=5000")
                    cursor.close()

        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create async session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    async def create_tables(self) -> None:
        """Create all database tables.

        Used for tests and first-run development databases. Deployed
        databases are managed with Alembic migrations.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Dispose of the engine and close all connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Async context manager for database sessions.

        Example:
            async with db_config.session() as session:
                result = await session.execute(select(Lab))
                labs = result.scalars().all()
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


# Global database instance
_db_config: Optional[DatabaseConfig] = None
_db_lock = threading.Lock()


def get_database() -> DatabaseConfig:
    """Get the global database configuration instance."""
    global _db_config
    if _db_config is None:
        with _db_lock:
            if _db_config is None:
                from radlims.core.config import get_settings

                settings = get_settings()
                logger.info(
                    "database_url_resolved",
                    url=make_url(settings.database_url).render_as_string(hide_password=True),
                )
                _db_config = DatabaseConfig(database_url=settings.database_url, echo=False)
    return _db_config


def set_database(config: Optional[DatabaseConfig]) -> None:
    """Set (or clear, with ``None``) the global database configuration instance."""
    global _db_config
    with _db_lock:
        _db_config = config


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency function for FastAPI to get database sessions."""
    db = get_database()
    async with db.session() as session:
        yield session
