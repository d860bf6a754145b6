"""
database.py - SQLAlchemy 2.0 async engine and session factory.

This module owns ALL database connection infrastructure (review archive and
user profiles). Conversation sessions live in Redis, see cache.py.

Usage in store.py adapters (they manage their own session scope):
    from cvcoach.database import AsyncSessionLocal
    async with AsyncSessionLocal() as session: ...
"""
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cvcoach.config import settings


class Base(DeclarativeBase):
    """
    Declarative base for every ORM model in cvcoach/models/.
    Defined here (not in models/) to avoid circular imports in alembic/env.py.
    """
    pass


async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

