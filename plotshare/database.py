from collections.abc import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from plotshare.config import settings
from plotshare.exceptions import DisputeError

logger = structlog.get_logger()

# SQLite (used in tests) does not support SSL connect_args or pool sizing.
_engine_kwargs: dict = {"echo": settings.APP_DEBUG, "pool_pre_ping": True}
if "sqlite" not in settings.DATABASE_URL:
    _engine_kwargs.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=3600,
        pool_timeout=30,
    )
    if settings.APP_ENV in ("production", "staging"):
        _engine_kwargs["connect_args"] = {"ssl": "require"}

engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on any error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except DisputeError:
            # Expected domain outcome, reported to the caller by the error handler
            await session.rollback()
            raise
        except Exception:
            await session.rollback()
            logger.exception("db_session_failed")
            raise
