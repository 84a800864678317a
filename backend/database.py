"""
Database configuration and session management.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_app_config


config = get_app_config()

# Create engine
engine = create_async_engine(
    config.database_url,
    pool_pre_ping=True,
    echo=config.db_echo
)

# Session factory
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency for FastAPI."""
    async with SessionLocal() as session:
        yield session


async def create_tables() -> None:
    """Create all database tables. Alembic revisions own the schema in production."""
    from models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables() -> None:
    """Drop all database tables."""
    from models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
