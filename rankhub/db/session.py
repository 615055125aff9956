"""
Async SQLAlchemy engine & session factory (asyncpg driver in production,
aiosqlite in tests).
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rankhub.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    engine_args: dict[str, object] = {
        "echo": False,
        "pool_pre_ping": True,
    }

    if "postgresql" in settings.DATABASE_URL:
        engine_args.update(
            {
                "pool_size": 20,
                "max_overflow": 10,
                "pool_recycle": 300,
            }
        )

    return create_async_engine(settings.DATABASE_URL, **engine_args)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
