"""Database session manager."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .base import Base


class DatabaseSessionManager:
    """Database session manager.

    Every logical request opens its own session (unit of work) and either
    commits or rolls back before the session is closed. No connection state
    is shared between requests.
    """

    def __init__(self, host: str, engine_kwargs: dict[str, object] | None = None):
        """Initialize the database session manager."""
        self._engine: AsyncEngine | None = create_async_engine(
            host, **(engine_kwargs or {})
        )
        self._sessionmaker: async_sessionmaker | None = async_sessionmaker(
            autocommit=False, bind=self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        if self._engine is None:
            raise Exception("DatabaseSessionManager is not initialized")
        # Import for the side effect of registering the mappers.
        from . import models  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close the database session manager."""
        if self._engine is None:
            raise Exception("DatabaseSessionManager is not initialized")
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        if self._sessionmaker is None:
            raise Exception("DatabaseSessionManager is not initialized")

        session = self._sessionmaker()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
