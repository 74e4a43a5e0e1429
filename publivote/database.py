import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from publivote.config import settings
from publivote.exceptions import StorageFailure
from publivote.middleware import install_query_counter

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

install_query_counter(engine)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Open a session, run the caller's block inside one transaction and
    release it.

    Commits when the block exits normally and rolls back on any exception.
    Commit and rollback are shielded so a cancelled caller never leaves a
    half-applied transaction behind.  Driver/ORM errors are re-raised as
    ``StorageFailure``; domain errors propagate unchanged after rollback.
    """
    session = session_factory()
    try:
        await session.begin()
        try:
            yield session
        except BaseException:
            await asyncio.shield(session.rollback())
            raise
        try:
            await asyncio.shield(session.commit())
        except SQLAlchemyError:
            await asyncio.shield(session.rollback())
            raise
    except SQLAlchemyError as exc:
        raise StorageFailure(f"Database transaction failed: {exc}") from exc
    finally:
        await asyncio.shield(session.close())


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session for the thin CRUD routers."""
    async with transaction(async_session) as session:
        yield session
