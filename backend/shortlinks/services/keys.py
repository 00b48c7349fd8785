"""Short key generation.

Random keys are drawn with ``secrets`` because a key frequently doubles as an
unguessable capability token. Every candidate is checked against the store,
tombstoned links included, and the final claim is still made by the unique
constraint at insert time (see ``LinkManager``).
"""

import logging
import re
import secrets
from typing import Protocol

from shortlinks.core.exceptions import DuplicateKeyError, KeyExhaustionError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 100

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_KEY_CHARS = re.compile(r"[^a-z0-9]+")


class KeyLookup(Protocol):
    async def link_key_exists(self, key: str) -> bool: ...


def kebab(value: str) -> str:
    """``"BlogPost"`` -> ``"blog-post"``, ``"My Article"`` -> ``"my-article"``."""
    value = _CAMEL_BOUNDARY.sub("-", value.strip())
    return _NON_KEY_CHARS.sub("-", value.lower()).strip("-")


def random_code(length: int, charset: str) -> str:
    if length < 1:
        raise ValueError("Key length must be at least 1")
    if not charset:
        raise ValueError("Key charset must not be empty")
    return "".join(secrets.choice(charset) for _ in range(length))


class KeyGenerator:
    def __init__(self, store: KeyLookup, charset: str, length: int, model_key_length: int = 4):
        self.store = store
        self.charset = charset
        self.length = length
        self.model_key_length = model_key_length

    async def generate(
        self,
        custom_key: str | None = None,
        charset: str | None = None,
        length: int | None = None,
    ) -> str:
        """Return ``custom_key`` if it is free, else a fresh random key."""
        if custom_key:
            if await self.store.link_key_exists(custom_key):
                raise DuplicateKeyError(custom_key)
            return custom_key

        charset = charset or self.charset
        length = length or self.length
        return await self._draw(lambda: random_code(length, charset))

    async def generate_prefixed(
        self,
        prefix: str,
        random_code_length: int | None = None,
        charset: str | None = None,
    ) -> str:
        """Return ``{prefix}-{random code}``, e.g. ``blog-post-x7Kq``."""
        charset = charset or self.charset
        length = random_code_length or self.model_key_length
        return await self._draw(lambda: f"{prefix}-{random_code(length, charset)}")

    async def _draw(self, candidate) -> str:
        for _ in range(MAX_ATTEMPTS):
            key = candidate()
            if not await self.store.link_key_exists(key):
                return key
        logger.error("Key space exhausted after %d attempts", MAX_ATTEMPTS)
        raise KeyExhaustionError(MAX_ATTEMPTS)
