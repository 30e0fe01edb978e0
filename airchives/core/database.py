from typing import AsyncGenerator, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from airchives.core.config import settings
from airchives.core.exceptions import PersistenceError

# Import ALL models to ensure they're registered with SQLModel.metadata
from airchives.modules.garments.models import Garment  # noqa: F401
from airchives.modules.catalog.models import VirtualModel  # noqa: F401
from airchives.modules.generations.models import Generation, OutputImage  # noqa: F401

# Create async engine
engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)

# Create async session factory
async_session_maker = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def create_db_and_tables(target: AsyncEngine = engine):
    """Create all tables if they don't exist."""
    async with target.begin() as conn:
        await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, checkfirst=True))


def create_worker_session_maker() -> Tuple[AsyncEngine, sessionmaker]:
    """Engine and session factory for Celery tasks.

    Each task runs on its own event loop, so pooled connections cannot be
    shared across tasks. The caller disposes the engine when the task ends.
    """
    worker_engine = create_async_engine(settings.DATABASE_URL, echo=False, poolclass=NullPool)
    return worker_engine, sessionmaker(worker_engine, class_=AsyncSession, expire_on_commit=False)


async def commit_or_raise(session: AsyncSession, what: str):
    """Commit, converting driver errors into PersistenceError."""
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError(f"Failed to persist {what}: {e}") from e


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
