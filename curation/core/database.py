"""Async database engine, session factory and connection management.

The engine is created on first use so that importing the package never
opens a connection or requires a database driver.
"""

from collections.abc import AsyncGenerator
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from curation.core.config import settings
from curation.core.exceptions import ConfigurationError
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    # The driver's implicit BEGIN breaks SAVEPOINT; transactions are begun in _begin_sqlite
    dbapi_connection.isolation_level = None
    # SQLite ignores REFERENCES clauses unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite(conn) -> None:
    # Take the write lock up front so concurrent writers queue on busy_timeout
    # instead of failing when a read lock cannot be upgraded
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Create an async engine for the given URL (defaults to settings).

    Args:
        url: SQLAlchemy URL; ``settings.database_url`` when omitted
        echo: Override for SQL statement logging

    Returns:
        AsyncEngine: Configured engine
    """
    url = url or settings.database_url
    if not url:
        raise ConfigurationError("No database URL configured; set DATABASE_URL")
    echo = settings.database_echo if echo is None else echo

    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, future=True)
        event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
        event.listen(engine.sync_engine, "begin", _begin_sqlite)
        return engine

    connect_args: dict = {}
    if url.startswith("postgresql+asyncpg") and settings.db.statement_timeout_ms:
        connect_args["server_settings"] = {
            "statement_timeout": str(settings.db.statement_timeout_ms)
        }

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=echo,
        future=True,
        connect_args=connect_args,
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = build_session_maker(get_engine())
    return _session_maker


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting an async database session.

    Yields:
        AsyncSession: Database session
    """
    async with get_session_maker()() as session:
        try:
            yield session
        finally:
            await session.close()


class DatabaseClient:
    """Database client with connection and schema management."""

    def __init__(self, engine: AsyncEngine):
        """Initialize database client.

        Args:
            engine: SQLAlchemy async engine
        """
        self.engine = engine
        self._connected = False

    async def connect(self) -> bool:
        """Test database connection."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

            self._connected = True
            LOGGER.info("Database connection successful")
            return True

        except Exception:
            self._connected = False
            LOGGER.error("Database connection failed", exc_info=True)
            raise

    async def disconnect(self) -> None:
        """Close database connection."""
        await self.engine.dispose()
        self._connected = False
        LOGGER.info("Database connection closed")

    async def create_tables(self) -> None:
        """Create all tables that don't exist yet without dropping existing ones."""
        # Models register themselves on Base.metadata at import
        import curation.database.models  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            LOGGER.info("Database tables created/verified successfully")

        except Exception as e:
            LOGGER.error(
                "Failed to create database tables",
                exc_info=True,
                extra={"error": str(e)}
            )
            raise

    async def drop_tables(self) -> None:
        """Drop all database tables.

        WARNING: This will delete all data, including the audit trail!
        """
        import curation.database.models  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)

            LOGGER.warning("All database tables dropped")

        except Exception as e:
            LOGGER.error(
                "Failed to drop database tables",
                exc_info=True,
                extra={"error": str(e)}
            )
            raise

    async def health_check(self) -> dict:
        """Check database health."""
        try:
            async with self.engine.connect() as conn:
                val = await conn.scalar(text("SELECT 1"))

            self._connected = True
            return {
                "status": "healthy",
                "connected": True,
                "dialect": self.engine.dialect.name,
                "latency_test": "passed" if val == 1 else "failed",
            }

        except Exception as e:
            self._connected = False
            LOGGER.error("Database health check failed", extra={"error": str(e)})
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
            }

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._connected


async def init_database(create_tables: bool = False) -> DatabaseClient:
    """Initialize the database connection and optionally create tables.

    Production schemas are managed by Alembic; ``create_tables`` exists for
    local development and tests.
    """
    client = DatabaseClient(get_engine())
    LOGGER.info("Initializing database connection...")
    await client.connect()
    if create_tables:
        await client.create_tables()
    LOGGER.info("Database initialization completed")
    return client


async def close_database() -> None:
    """Dispose of the shared engine."""
    global _engine, _session_maker
    if _engine is not None:
        LOGGER.info("Closing database connection...")
        await _engine.dispose()
        _engine = None
        _session_maker = None
        LOGGER.info("Database connection closed successfully")
