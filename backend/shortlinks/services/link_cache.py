"""Cache-aside storage of links, keyed ``{prefix}:link:{key}``."""

import logging

from pydantic import ValidationError

from shortlinks.models.link import ShortLink
from shortlinks.schemas.link import LinkSnapshot
from shortlinks.services.cache import Cache, NullCache, cache_key

logger = logging.getLogger(__name__)


class LinkCache:
    def __init__(self, cache: Cache | None, prefix: str, ttl: int):
        self.cache = cache if cache is not None else NullCache()
        self.prefix = prefix
        self.ttl = ttl

    def key_for(self, key: str) -> str:
        return cache_key(self.prefix, "link", key)

    async def get(self, key: str) -> ShortLink | None:
        raw = await self.cache.get(self.key_for(key))
        if raw is None:
            return None
        try:
            snapshot = LinkSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry for %s", key)
            await self.cache.delete(self.key_for(key))
            return None
        # Transient instance: never attached to a session, so never flushed.
        return ShortLink(**snapshot.model_dump())

    async def put(self, link: ShortLink) -> None:
        payload = LinkSnapshot.model_validate(link).model_dump_json()
        await self.cache.set(self.key_for(link.key), payload, self.ttl)

    async def invalidate(self, key: str) -> None:
        await self.cache.delete(self.key_for(key))

    async def clear(self) -> int:
        return await self.cache.clear(self.prefix)
