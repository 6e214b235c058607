from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from ringhub.config import settings
from ringhub.exceptions import StoreUnavailable

engine = create_async_engine(settings.database_url, echo=settings.debug, pool_pre_ping=True)


async_session_factory = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_db():
    """FastAPI dependency: yields AsyncSession per request."""
    async with async_session_factory() as session:
        yield session


# Errors that mean "the database call did not happen"; asyncpg can surface raw
# socket errors before SQLAlchemy wraps them
DB_ERRORS = (SQLAlchemyError, OSError)


@asynccontextmanager
async def store_session(
    session_factory: async_sessionmaker[AsyncSession], store: str, operation: str
) -> AsyncIterator[AsyncSession]:
    """Open one session for one store call, translating failures to StoreUnavailable.

    Each store call commits on its own; nothing spans two calls.
    """
    try:
        async with session_factory() as session:
            yield session
    except DB_ERRORS as exc:
        raise StoreUnavailable(store, operation) from exc
