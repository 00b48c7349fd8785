"""Cache capability used for cache-aside link lookups.

Cache I/O is best effort: a failed read is a miss, a failed write or delete
is logged and dropped. Nothing here raises into the request path.
"""

import asyncio
import logging
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class Cache(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self, prefix: str) -> int: ...


class NullCache:
    """Disabled cache: every read misses, every write is dropped."""

    async def get(self, key: str) -> str | None:
        return None

    async def set(self, key: str, value: str, ttl: int) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None

    async def clear(self, prefix: str) -> int:
        return 0

    async def aclose(self) -> None:
        return None


class RedisCache:
    def __init__(self, client: aioredis.Redis, timeout: float = 0.5):
        self.client = client
        self.timeout = timeout

    @classmethod
    def from_url(cls, url: str, timeout: float = 0.5) -> "RedisCache":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, timeout=timeout)

    async def get(self, key: str) -> str | None:
        try:
            return await asyncio.wait_for(self.client.get(key), self.timeout)
        except (RedisError, OSError, TimeoutError):
            logger.warning("Cache read failed for %s; treating as miss", key, exc_info=True)
            return None

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await asyncio.wait_for(self.client.set(key, value, ex=ttl), self.timeout)
        except (RedisError, OSError, TimeoutError):
            logger.warning("Cache write failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.wait_for(self.client.delete(key), self.timeout)
        except (RedisError, OSError, TimeoutError):
            logger.warning("Cache delete failed for %s", key, exc_info=True)

    async def clear(self, prefix: str) -> int:
        """Delete every key under ``prefix:``. Returns the number of keys removed."""
        removed = 0
        async for key in self.client.scan_iter(match=f"{prefix}:*", count=500):
            removed += await self.client.delete(key)
        return removed

    async def ping(self) -> bool:
        try:
            return bool(await asyncio.wait_for(self.client.ping(), self.timeout))
        except (RedisError, OSError, TimeoutError):
            logger.warning("Cache ping failed", exc_info=True)
            return False

    async def aclose(self) -> None:
        await self.client.aclose()


def cache_key(prefix: str, *parts: str) -> str:
    return ":".join((prefix, *parts))
