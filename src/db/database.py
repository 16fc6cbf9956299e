"""Async engine and session factory with an explicit open/close lifecycle."""

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.models.base import Base


class Database:
    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        self._url = database_url
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    async def open(self, *, create_tables: bool = True) -> None:
        if self._engine is not None:
            return
        kwargs: dict = {"echo": self._echo}
        if not self._url.startswith("sqlite"):
            kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True, pool_recycle=3600)
        self._engine = create_async_engine(self._url, **kwargs)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if create_tables:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("[STORE] Database opened")

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("[STORE] Database closed")

    def session(self) -> AsyncSession:
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory()
