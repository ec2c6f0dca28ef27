import logging
from typing import Any, AsyncGenerator, Dict, Sequence

from sqlalchemy import NullPool, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base

from relay.config import settings

logger = logging.getLogger(__name__)


def _async_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


# Create async engine
if settings.DEBUG:
    # No pool in debug mode
    engine = create_async_engine(
        _async_url(settings.DATABASE_URL),
        echo=settings.DB_ECHO,
        poolclass=NullPool,
    )
else:
    engine = create_async_engine(
        _async_url(settings.DATABASE_URL),
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=settings.DB_POOL_PRE_PING,
    )

# Session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_session() -> AsyncGenerator[AsyncSession, Any]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def insert_or_ignore(
        session: AsyncSession,
        table,
        values: Dict[str, Any],
        conflict_columns: Sequence[str],
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING; True when a row was written.

    The unique constraint on ``conflict_columns`` is the arbiter, so two
    processes racing on the same key end up with exactly one row.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(table).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values)
    else:
        raise NotImplementedError(f"insert_or_ignore is not supported for dialect {dialect}")

    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    result = await session.execute(stmt)
    return result.rowcount == 1


async def init_db(create_tables: bool = False):
    """Initialize database - optionally create tables"""
    # registers every mapped table on Base.metadata
    import relay.models  # noqa: F401

    try:
        async with engine.begin() as conn:
            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


async def close_db():
    """Close database connections"""
    await engine.dispose()
    logger.info("Database connections closed")


async def check_db_connection(session_factory: async_sessionmaker = AsyncSessionLocal) -> bool:
    """Check if database is healthy"""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
