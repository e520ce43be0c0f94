"""
Shared pytest configuration for Street Paddle tests.

Database-backed tests run on a throwaway SQLite file per test through
aiosqlite. Set TEST_DATABASE_URL to run them against a server database
instead.

SAFETY: a TEST_DATABASE_URL whose database name does not contain "test" is
refused, since the fixtures drop every table.
"""

import os

# Must be set before the routes package is imported (rate limiter switch)
os.environ.setdefault("ENV", "test")

import asyncio  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from streetpaddle.database.db import Base  # noqa: E402
from streetpaddle.services import user_service  # noqa: E402


def _resolve_test_database_url(tmp_path) -> str:
    """Pick the test database URL with safety checks.

    Raises ``RuntimeError`` if TEST_DATABASE_URL points to a database whose
    name does not contain "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "")
    if not url:
        return f"sqlite+aiosqlite:///{tmp_path / 'streetpaddle_test.db'}"

    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Fix: point TEST_DATABASE_URL at a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../streetpaddle_test\n"
            f"{'=' * 70}"
        )
    return url


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with a fresh schema."""
    # NullPool avoids reusing connections across event loops
    engine = create_async_engine(
        _resolve_test_database_url(tmp_path),
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        from streetpaddle.database import models  # noqa: F401

        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions through db.AsyncSessionLocal (the
    # unread aggregator, the inbox stream) must hit the same database
    from streetpaddle.database import db

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local

    await asyncio.sleep(0.05)  # Let in-flight branch sessions finish
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Database session for the test. Services commit on their own."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest_asyncio.fixture
async def make_user(db_session):
    """Factory creating users: ``await make_user("alice")`` returns the user id."""

    async def _make_user(username: str, email: str = None) -> str:
        return await user_service.create_user(db_session, username, email=email)

    return _make_user
