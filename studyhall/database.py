from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from studyhall.config import settings
from studyhall.rate_limit import MemoryRateLimitStore, RedisRateLimitStore
import redis.asyncio as redis

async_engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

def create_redis_client(url: str = settings.REDIS_URL):
    return redis.from_url(url, decode_responses=True)

def create_rate_limit_store(backend: str = settings.RATE_LIMIT_BACKEND):
    """Shared Redis windows when several workers serve the app, else per process."""
    if backend == "redis":
        return RedisRateLimitStore(create_redis_client())
    if backend != "memory":
        raise ValueError(f"Unknown rate limit backend: {backend}")
    return MemoryRateLimitStore()

async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def create_tables():
    from studyhall.models.base import Base
    from studyhall.models import user, chat, chat_membership, message, friendship, friend_request

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
