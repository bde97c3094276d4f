"""Async SQLAlchemy engine and session factory.

Routes get a request-scoped session through `get_db`. The job worker and
the stale-job reaper open short sessions from `async_session` directly, one
per queue operation, so a claim is committed before its handler runs.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from app.config import settings

# SQLite (local runs, tests) manages its own pool
_pool_options = {} if settings.DATABASE_URL.startswith("sqlite") else {"pool_size": 10, "max_overflow": 20}

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    **_pool_options,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
