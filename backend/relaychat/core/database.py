"""Database configuration and session management."""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from relaychat.core.config import settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _install_sqlite_pragmas(engine: AsyncEngine, *, wal: bool) -> None:
    """Enforce foreign keys (and WAL for file databases) on every new connection.

    SQLite ignores ``ON DELETE CASCADE`` unless ``foreign_keys`` is switched on
    per connection.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the conversation store."""
    engine = create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
    )
    if engine.dialect.name == "sqlite":
        _install_sqlite_pragmas(engine, wal=":memory:" not in database_url)
    return engine


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Process-wide engine; the file is only opened on first use
async_engine = build_engine(settings.database_url, echo=settings.debug)
async_session_maker = build_session_maker(async_engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize database (create tables)."""
    # Register models on Base.metadata
    import relaychat.models  # noqa: F401

    async with (engine or async_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
