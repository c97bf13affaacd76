"""Database engine, sessions and declarative base shared by the API and workers."""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Async engine; connections are only opened on first use."""
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """
    Session factory for short-lived units of work.

    Objects stay usable after commit so workers can publish events from
    the record they just transitioned.
    """
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(settings.database_url, echo=settings.log_level.upper() == "DEBUG")
async_session_maker = create_session_maker(engine)


class Base(DeclarativeBase):
    """Base class for transaction records and queue checkpoints."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_maker() as session:
        yield session


async def dispose_engine() -> None:
    await engine.dispose()
