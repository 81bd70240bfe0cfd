"""SQLAlchemy engine, session factory and declarative base."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from paylater_service.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL_ASYNC,
    echo=settings.SQL_ECHO,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all models."""


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for one request.

    Services commit their own unit of work; anything left uncommitted is
    rolled back when the session closes.
    """
    async with AsyncSessionLocal() as session:
        yield session
