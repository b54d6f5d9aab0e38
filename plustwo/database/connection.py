"""
Async engine and session factory shared by the vote store and the entry points.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from plustwo.config import settings
from plustwo.database.models import Base


def make_engine(url: str) -> AsyncEngine:
    # Timestamps are stored and read back in UTC
    return create_async_engine(
        url,
        pool_pre_ping=True,
        connect_args={"server_settings": {"timezone": "UTC"}},
    )


engine: AsyncEngine = make_engine(settings.database_url)

SessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create the message_kind type and all tables if they do not exist yet."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
