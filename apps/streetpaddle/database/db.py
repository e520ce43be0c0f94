"""
Async engine, session factory and declarative base.

The connection string comes from DATABASE_URL (PostgreSQL through asyncpg
by default). SQLite URLs are accepted for local runs and tests.
"""

import os
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
from sqlalchemy.orm import DeclarativeBase
from dotenv import load_dotenv

load_dotenv()


def _default_database_url() -> str:
    user = os.getenv("POSTGRES_USER", "streetpaddle")
    password = os.getenv("POSTGRES_PASSWORD", "streetpaddle")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    name = os.getenv("POSTGRES_DB", "streetpaddle")
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


DATABASE_URL = os.getenv("DATABASE_URL") or _default_database_url()


def _engine_options(url: str) -> dict:
    """Pool settings only apply to server databases, not SQLite files."""
    options = {
        "echo": os.getenv("SQL_ECHO", "false").lower() == "true",
        "future": True,
        "pool_pre_ping": True,
    }
    if not url.startswith("sqlite"):
        options.update(pool_size=10, max_overflow=20)
    return options


engine: AsyncEngine = create_async_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

# Sessions keep loaded attributes after commit; services build dicts post-commit
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Declarative base for the ORM models."""


# Registers the tables on Base.metadata; must follow Base
from streetpaddle.database import models  # noqa: F401, E402


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session for one request.

    Work left pending by the handler is committed when it returns and rolled
    back if it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_database():
    """Create any missing tables (migrations remain the source of truth)."""
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(bind=sync_conn, checkfirst=True))


async def close_database():
    """Dispose of pooled connections on shutdown."""
    await engine.dispose()
