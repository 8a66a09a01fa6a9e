"""
API Dependencies

Dependency injection for DB sessions and the controller's session factory.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from db.session import AsyncSessionLocal
from ensemble.policy import RolloutPolicy


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for jobs that open one session per unit of work."""
    return AsyncSessionLocal


def get_rollout_policy() -> RolloutPolicy:
    return RolloutPolicy.from_settings(get_settings())
