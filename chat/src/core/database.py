import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

# Services commit as soon as a write is durable and keep using the rows afterwards
async_session = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def db_dependency() -> AsyncIterator[AsyncSession]:
    async with get_db() as session:
        yield session


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into StoreUnavailable.

    IntegrityError is left alone: callers that expect a constraint conflict
    handle it themselves.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as e:
        logger.error("Store failure during %s: %s", operation, e.__class__.__name__)
        raise StoreUnavailable(operation) from e
