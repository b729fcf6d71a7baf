"""
Database connection and session management.
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import MetaData, event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from pingchat.core.errors import NetworkUnavailable
from pingchat.core.logging import get_logger

logger = get_logger(__name__)

# Constraint names are stable so migrations and IntegrityError logs line up
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Shared marketplace store
Base = declarative_base(metadata=MetaData(naming_convention=convention))


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, preparing SQLite files and pragmas."""
    connect_args = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        # Writers wait on the file lock instead of failing immediately
        connect_args["timeout"] = 15

        # Extract file path from sqlite+aiosqlite:///./path/to/db.db and ensure directory exists
        db_path = database_url.split(":///", 1)[-1]
        if db_path and db_path != ":memory:":
            db_dir = Path(db_path).parent
            if not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created database directory: {db_dir}")

    engine = create_async_engine(
        database_url,
        connect_args=connect_args,
        echo=echo,
        pool_pre_ping=True,
    )

    # Enable foreign keys for SQLite
    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create the marketplace tables."""
    # Import to register models
    from pingchat.models import conversation, directory, phone, ping, rate_limit  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def check_db_connection(engine: AsyncEngine) -> bool:
    """Check if database is reachable."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


def is_disconnect(error: BaseException) -> bool:
    """True when a store error means the server could not be reached."""
    if isinstance(error, DBAPIError):
        return bool(error.connection_invalidated) or isinstance(error.orig, (OSError, ConnectionError))
    return isinstance(error, (OSError, ConnectionError))


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session for one unit of work.

    Connectivity failures are re-raised as NetworkUnavailable so send paths
    can park the action in the offline queue. Anything else propagates.
    """
    try:
        async with session_factory() as session:
            yield session
    except (DBAPIError, OSError) as e:
        if is_disconnect(e):
            logger.warning(
                "Store unreachable",
                extra={"extra_data": {"error": str(e)}}
            )
            raise NetworkUnavailable("Store unreachable", cause=e) from e
        raise


async def init_queue_db(engine: AsyncEngine) -> None:
    """Create the device-local offline queue table."""
    from pingchat.models.offline import QueueBase

    async with engine.begin() as conn:
        await conn.run_sync(QueueBase.metadata.create_all)
    logger.info("Offline queue tables created")
