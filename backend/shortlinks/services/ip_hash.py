"""Salted IP hashing for privacy-safe visit tracking."""

import hashlib

from shortlinks.core.config import settings


def hash_ip(ip: str | None, salt: str | None = None) -> str | None:
    """Return salted SHA-256 hex digest of the IP, or None if no IP."""
    if not ip:
        return None
    salt = settings.IP_HASH_SALT if salt is None else salt
    return hashlib.sha256(f"{salt}:{ip}".encode()).hexdigest()
