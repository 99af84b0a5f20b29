"""
Database engine and session factory construction with SQLAlchemy async
"""

from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
import logging

logger = logging.getLogger(__name__)


def create_engine(database_url: str, echo: bool = False, pool_size: Optional[int] = None) -> AsyncEngine:
    """Create an async engine for the relational store."""
    kwargs = {"echo": echo, "future": True, "pool_pre_ping": True}

    # SQLite does not take pool sizing arguments
    if pool_size and not database_url.startswith("sqlite"):
        kwargs["pool_size"] = pool_size

    engine = create_async_engine(database_url, **kwargs)
    logger.debug(f"Created async engine for dialect {engine.dialect.name}")
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory shared by the checkpoint store, fetch cache and bulk writer."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


def build_database(database_url: str, echo: bool = False, pool_size: Optional[int] = None) -> Tuple[AsyncEngine, async_sessionmaker]:
    """Create engine and session factory in one call."""
    engine = create_engine(database_url, echo=echo, pool_size=pool_size)
    return engine, create_session_factory(engine)
