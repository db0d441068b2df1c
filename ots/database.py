"""Database engine construction and schema bootstrap."""

import logging

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from ots.utils.retry import async_retry

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the configured database.

    SQLite in-memory databases use a single shared connection so every session
    sees the same data. File-backed SQLite gets a busy timeout so concurrent
    writers queue behind each other instead of failing immediately. Server
    databases get a connection pool.
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url:
            return create_async_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 5},
        )

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the secret store."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@async_retry(max_attempts=5, backoff_base=2.0, backoff_max=10.0, exceptions=(OperationalError,))
async def init_db(engine: AsyncEngine) -> None:
    """Create the secrets table and its expiry index if they do not exist.

    The first connection is retried with exponential backoff so the service
    can start before the database container finishes booting.
    """
    # Register models on Base.metadata
    import ots.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if engine.dialect.name != "sqlite":
        logger.info(f"Database schema ready ({engine.dialect.name})")
        return

    if engine.url.database and engine.url.database != ":memory:":
        # journal_mode cannot change inside a transaction
        async with engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            # WAL lets readers proceed while a consume holds the write lock
            await conn.execute(text("PRAGMA journal_mode=WAL"))
    logger.info("SQLite schema ready")


async def ping(engine: AsyncEngine) -> None:
    """Run a trivial query; raises if the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
