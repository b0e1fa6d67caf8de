"""Database connection and session management."""

from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
from crm_sync.config import settings


def _async_url(url: str) -> str:
    # Convert postgresql:// to postgresql+asyncpg://
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


# Local store
engine = create_async_engine(
    _async_url(settings.DATABASE_URL),
    echo=settings.LOG_LEVEL == "DEBUG",
    pool_pre_ping=True,
    pool_size=20,
    max_overflow=10
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

# Base class for local models
Base = declarative_base()

# Base class for the scouter-management tables (separate deployment)
DestinationBase = declarative_base()

_destination_engine: Optional[AsyncEngine] = None
_destination_sessionmaker: Optional[async_sessionmaker] = None


def destination_configured() -> bool:
    return bool(settings.DESTINATION_DATABASE_URL)


def get_destination_sessionmaker() -> async_sessionmaker:
    """Lazily build the destination engine; raises if it is not configured."""
    global _destination_engine, _destination_sessionmaker
    
    if not destination_configured():
        raise RuntimeError("DESTINATION_DATABASE_URL is not configured")
    
    if _destination_sessionmaker is None:
        _destination_engine = create_async_engine(
            _async_url(settings.DESTINATION_DATABASE_URL),
            echo=settings.LOG_LEVEL == "DEBUG",
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=5
        )
        _destination_sessionmaker = async_sessionmaker(
            _destination_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )
    
    return _destination_sessionmaker


async def get_db():
    """Dependency to get database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
