"""
Persistence handle for the credential store.

The application owns one Database instance: opened in the FastAPI lifespan,
stored on app.state and closed on shutdown. Background jobs open their own.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from household_auth.core.config import settings

logger = logging.getLogger(__name__)


class Database:

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None, **engine_kwargs):
        self.url = url or settings.DATABASE_URL
        self.echo = settings.DATABASE_ECHO if echo is None else echo
        self.engine_kwargs = engine_kwargs
        self.engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    async def open(self, create_tables: bool = False) -> "Database":
        if self.is_open:
            return self
        self.engine = create_async_engine(self.url, echo=self.echo, future=True, **self.engine_kwargs)
        self._sessionmaker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        if create_tables:
            from household_auth.db.base import Base
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("Database opened (%s)", self.engine.url.render_as_string(hide_password=True))
        return self

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database closed")
        self.engine = None
        self._sessionmaker = None

    def session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        return self._sessionmaker()
