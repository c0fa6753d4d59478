"""
Database connection management.

This module provides:
- Async engine and session factory ownership
- Session context manager with rollback on error
- Schema creation helper for local runs and tests
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ..config import DatabaseConfig
from .models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the async engine and session factory for the audit store.

    One instance is created per process and shared by every repository;
    the engine's pool makes it safe to use from several ingestion loops.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config

        if config.is_sqlite:
            # In-memory SQLite must share a single connection
            self.engine = create_async_engine(
                config.connection_string,
                echo=config.echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_async_engine(
                config.connection_string,
                echo=config.echo,
                pool_size=config.pool_size,
                max_overflow=config.max_overflow,
                pool_timeout=config.pool_timeout,
                pool_recycle=config.pool_recycle,
                pool_pre_ping=True,
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a session for one unit of work.

        The caller commits; any exception rolls the session back and
        propagates.
        """
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        await self.engine.dispose()
        logger.info("Database connections closed")
