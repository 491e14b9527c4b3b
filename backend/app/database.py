"""Database configuration and async SQLAlchemy setup."""
import logging

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from app.config import settings

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    pool_pre_ping=True,
    pool_recycle=1800,
)

# Session factory shared by request handlers and the payout services.
# expire_on_commit=False keeps ledger rows readable after the flag-flip commit.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Base class for models
Base = declarative_base()


async def get_db():
    """Dependency to get database session."""
    async with AsyncSessionLocal() as session:
        yield session


async def ping_database(db: AsyncSession) -> bool:
    """True if the ledger database answers a trivial query."""
    try:
        await db.execute(text("SELECT 1"))
        return True
    except (DBAPIError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
