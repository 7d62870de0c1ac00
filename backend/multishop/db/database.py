from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from multishop.core.config import settings

async_engine = create_async_engine(settings.async_database_url, echo=settings.DEBUG)
async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

# Base class for models
Base = declarative_base()


async def get_db():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def atomic(session: AsyncSession):
    """
    Transaction scope for a multi-row write.

    Commits when the block exits cleanly and rolls back every write made
    in the block when it raises, then re-raises. Reads issued on the
    session before entering belong to the same database transaction.
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise


async def create_tables():
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
