from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from cryptofolio_api.models.base import Base
from cryptofolio_api.models.portfolio import Holding, Portfolio  # noqa: F401
from cryptofolio_api.models.user import User  # noqa: F401
from cryptofolio_shared.config import settings, logger


class Database:
    """
    Store handle owning the engine and session factory.

    Created once at application startup, injected where it is needed and
    disposed at shutdown.
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        self.url = url or settings.DATABASE_URL
        engine_kwargs = {"echo": settings.DB_ECHO if echo is None else echo}
        if self.url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"timeout": 30}
        self.engine: AsyncEngine = create_async_engine(self.url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    async def init_db(self) -> None:
        """
        Initialize the database by creating all tables.
        """
        logger.info("Initializing database")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized")

    async def dispose(self) -> None:
        logger.info("Disposing database engine")
        await self.engine.dispose()

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def check_db_connection(self) -> bool:
        """
        Check if the database connection is working.
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {str(e)}")
            return False


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """
    Dependency to get the database session.
    """
    async with get_database(request).session() as session:
        try:
            yield session
        finally:
            await session.close()
