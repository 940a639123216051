"""Database configuration and session management.

This module builds the asynchronous SQLAlchemy engine and session
factory for the application.  Nothing is created at import time: the
FastAPI lifespan calls :func:`build_engine` once at process start and
stores the engine and session factory on ``app.state``.  Request
handlers obtain a session through :func:`get_db`.

Plain ``postgresql://`` URLs are upgraded to the async psycopg driver
and plain ``sqlite://`` URLs to aiosqlite.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Any, Dict

from fastapi import Request
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

# Declarative base
Base = declarative_base()


def normalise_database_url(db_url: str) -> str:
    """Rewrite sync driver names to their async counterparts."""
    url_obj = make_url(db_url)
    driver = url_obj.drivername or ""
    if driver == "sqlite":
        url_obj = url_obj.set(drivername="sqlite+aiosqlite")
    elif driver in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+asyncpg"}:
        url_obj = url_obj.set(drivername="postgresql+psycopg")
    return url_obj.render_as_string(hide_password=False)


def build_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for ``db_url``."""
    db_url = normalise_database_url(db_url)
    engine_kwargs: dict[str, Any] = dict(echo=echo)
    if not db_url.startswith("sqlite"):
        engine_kwargs["pool_pre_ping"] = True
    engine = create_async_engine(db_url, **engine_kwargs)
    logger.info("Created async engine url=%s", make_url(db_url).render_as_string(hide_password=True))
    return engine


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables defined on the declarative ``Base``.

    Intended for development and tests; production schemas are expected
    to already exist.
    """
    # Import models so Base.metadata knows about them
    from receiptly.models import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a request-scoped database session."""
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.sessionmaker
    async with session_factory() as session:
        yield session


def get_db_debug_info(engine: AsyncEngine) -> Dict[str, Any]:
    """Return non-sensitive information about the engine for debugging."""
    url_obj = engine.url
    return {
        "drivername": url_obj.drivername,
        "host": url_obj.host,
        "port": url_obj.port,
        "database": url_obj.database,
        "url": url_obj.render_as_string(hide_password=True),
    }
