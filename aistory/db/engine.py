"""Database engine and per-request sessions for the story backend.

SQLite in development and tests, PostgreSQL (asyncpg) in production. SQLite
connections get ``PRAGMA foreign_keys=ON`` so author, reviewer and reporter
references are enforced the same way Postgres enforces them.
"""
from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from config.settings import settings


def database_url(raw: str) -> str:
    """Pick the async driver for a configured URL."""
    if raw.startswith("postgresql://"):
        return raw.replace("postgresql://", "postgresql+asyncpg://", 1)
    if raw.startswith("postgres://"):
        return raw.replace("postgres://", "postgresql+asyncpg://", 1)
    if raw.startswith("sqlite://"):
        return raw.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return raw


def enable_sqlite_foreign_keys(target: AsyncEngine) -> None:
    """Turn on FK enforcement for every new SQLite connection of ``target``."""

    @event.listens_for(target.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


_db_url = database_url(settings.DATABASE_URL)
_is_sqlite = _db_url.startswith("sqlite")

_engine_kwargs: dict = {"echo": False}

if not _is_sqlite:
    _engine_kwargs.update({
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    })

engine = create_async_engine(_db_url, **_engine_kwargs)
if _is_sqlite:
    enable_sqlite_foreign_keys(engine)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncSession:
    """FastAPI dependency: one session per request.

    Anything a handler did not commit is rolled back when the request fails, so
    an aborted register or reset leaves its verification code unconsumed.
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
