"""Database connection and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tourney.config import get_settings
from tourney.logging_config import get_logger
from tourney.utils.errors import TransientError

settings = get_settings()
logger = get_logger(__name__)

# Connectivity loss, lock/statement timeouts and pool exhaustion
TRANSIENT_DB_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
    TimeoutError,
)


def engine_options(database_url: str) -> dict[str, Any]:
    """Engine keyword arguments for the given backend.

    SQLite (tests, local tooling) does not take pool sizing arguments.
    """
    options: dict[str, Any] = {"echo": settings.app_debug, "future": True}
    if database_url.startswith("sqlite"):
        return options

    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_pre_ping=True,
    )
    if database_url.startswith("postgresql+asyncpg"):
        options["connect_args"] = {
            "server_settings": {
                "statement_timeout": str(settings.db_statement_timeout_ms),
            },
        }
    return options


engine = create_async_engine(
    settings.database_url,
    **engine_options(settings.database_url),
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database session.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for getting async database session.

    Usage:
        async with get_db_session() as session:
            result = await session.execute(...)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def transaction(
    session: AsyncSession,
    operation: str,
) -> AsyncGenerator[AsyncSession, None]:
    """Run one unit of work: commit on success, roll back on any error.

    Connectivity and timeout failures are re-raised as ``TransientError``
    so callers (HTTP handlers, schedulers) can retry. Any other error
    propagates unchanged after the rollback.
    """
    try:
        yield session
        await session.commit()
    except TRANSIENT_DB_ERRORS as e:
        await session.rollback()
        logger.warning(
            "db_transient_failure",
            operation=operation,
            error_type=type(e).__name__,
            error=str(e),
        )
        raise TransientError(operation) from e
    except Exception:
        await session.rollback()
        raise


@asynccontextmanager
async def standalone_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Engine and session factory owned by the current event loop.

    Celery tasks and scripts run each job under its own ``asyncio.run``;
    pooled connections must not outlive that loop.
    """
    own_engine = create_async_engine(
        settings.database_url,
        **engine_options(settings.database_url),
    )
    try:
        yield async_sessionmaker(
            bind=own_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    finally:
        await own_engine.dispose()


async def init_db() -> None:
    """Initialize database connection pool."""
    async with engine.begin() as conn:
        await conn.run_sync(lambda _: None)


async def close_db() -> None:
    """Close database connection pool."""
    await engine.dispose()
