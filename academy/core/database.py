from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import text
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

from academy.core.config import Settings

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Owns the async engine and session factory for one application instance"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker] = None

    async def init_database(self) -> None:
        """Create the engine and session factory"""
        try:
            engine_kwargs = {
                "echo": self.settings.debug,
                "pool_pre_ping": True,
            }
            if self.settings.is_testing:
                engine_kwargs["poolclass"] = NullPool
            else:
                engine_kwargs["pool_recycle"] = 3600

            self.engine = create_async_engine(self.settings.database_url_computed, **engine_kwargs)
            self.session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )
            logger.info("Database connection initialised")

        except Exception as e:
            logger.error(f"Database initialisation failed: {e}")
            raise

    async def close_database(self) -> None:
        """Dispose the engine"""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; services commit at their own transaction boundaries"""
        if not self.session_maker:
            raise RuntimeError("Database is not initialised, call init_database() first")

        async with self.session_maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def health_check(self) -> dict:
        """Run a trivial query against the database"""
        try:
            if not self.engine:
                return {"status": "error", "message": "database engine not initialised"}

            async with self.engine.begin() as conn:
                result = await conn.execute(text("SELECT 1"))
                row = result.fetchone()

            return {
                "status": "healthy",
                "message": "database reachable",
                "test_query_result": row[0] if row else None
            }

        except Exception as e:
            return {
                "status": "error",
                "message": f"database unreachable: {str(e)}"
            }
