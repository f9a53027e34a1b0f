"""
Redis connection and stream management.

Redis Streams carry the watchlist and positions events; each ingest role
reads through its own consumer group.
"""

from typing import Optional
from redis.asyncio import Redis as AsyncRedis
from stockservice.core.config import settings

# Async Redis client (for API health checks)
async_redis_client: Optional[AsyncRedis] = None


def create_async_redis() -> AsyncRedis:
    """Create an async Redis client that decodes replies to str."""
    return AsyncRedis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
    )


def create_stream_redis() -> AsyncRedis:
    """
    Async Redis client for stream consumers. Replies stay raw bytes so a
    payload that is not valid UTF-8 reaches the consumer as a malformed
    message instead of failing the whole read.
    """
    return AsyncRedis.from_url(
        settings.REDIS_URL,
        decode_responses=False,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
    )


async def get_async_redis() -> AsyncRedis:
    """Get the shared async Redis client."""
    global async_redis_client
    if async_redis_client is None:
        async_redis_client = create_async_redis()
    return async_redis_client


async def close_redis() -> None:
    """Close the shared Redis connection."""
    global async_redis_client

    if async_redis_client is not None:
        await async_redis_client.aclose()
        async_redis_client = None


# Redis Stream names
class StreamNames:
    """Redis Stream names for the event bus."""

    WATCHLIST = settings.WATCHLIST_STREAM
    POSITIONS = settings.POSITIONS_STREAM
    METRICS = "metrics"

    @staticmethod
    def dead_letter(stream_name: str) -> str:
        return f"{stream_name}-dlq"


# Consumer group role suffixes
class ConsumerGroups:
    """Consumer groups derived from the configured base id."""

    WATCHLIST_SUFFIX = "-watchlist"
    POSITIONS_SUFFIX = "-positions"

    @classmethod
    def watchlist(cls, base: str = None) -> str:
        return (base or settings.CONSUMER_GROUP) + cls.WATCHLIST_SUFFIX

    @classmethod
    def positions(cls, base: str = None) -> str:
        return (base or settings.CONSUMER_GROUP) + cls.POSITIONS_SUFFIX
