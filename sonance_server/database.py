# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database engine and session factory."""

import logging

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from sonance_server.models.base import Base
from sonance_server.services.catalog import Catalog

logger = logging.getLogger(__name__)

# Applied to every new sqlite connection. A crash mid-scan is tolerable since
# scans are idempotent, so durability is traded for speed.
SQLITE_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = OFF",
    "PRAGMA journal_mode = MEMORY",
)


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine; sqlite connections get the catalog pragmas."""
    engine = create_async_engine(
        database_url,
        echo=False,
        query_cache_size=1200,
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables. Call at startup."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db: schema ready (%s)", engine.url.render_as_string(hide_password=True))


def get_catalog(request: Request) -> Catalog:
    """FastAPI dependency: the catalog built at startup."""
    return request.app.state.catalog
