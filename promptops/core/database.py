from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from .config import settings
from typing import AsyncGenerator, Optional


def create_engine(database_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """Create an async engine with the pool settings used against Supabase"""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo, **kwargs)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=300,
        **kwargs,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# Create async engine (only if database_url is provided)
engine: Optional[AsyncEngine] = None
if settings.database_url:
    engine = create_engine(settings.database_url, echo=settings.database_echo)

# Create async session factory (only if engine exists)
AsyncSessionLocal: Optional[async_sessionmaker] = None
if engine:
    AsyncSessionLocal = create_session_factory(engine)

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    if not AsyncSessionLocal:
        raise RuntimeError(
            "Database not configured. Please set DATABASE_URL in your .env file. "
            "Get it from Supabase Dashboard → Settings → Database → Connection string"
        )
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def init_db(bind: Optional[AsyncEngine] = None):
    """Initialize database tables"""
    bind = bind or engine
    if not bind:
        raise RuntimeError("Database engine not initialized. Set DATABASE_URL in .env")
    async with bind.begin() as conn:
        # Import all models to ensure they are registered
        from promptops.models import Base
        await conn.run_sync(Base.metadata.create_all)
