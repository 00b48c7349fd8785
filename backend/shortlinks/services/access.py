"""Access gate for short links.

Pure functions of (link fields, now). The gate order and the comparison
operators are fixed: a link is still reachable at the exact expiry instant
(``now > expires_at``) and is no longer reachable once ``clicks_count``
equals ``click_limit`` (``>=``).
"""

from datetime import datetime
from typing import Protocol

from shortlinks.core.exceptions import InaccessibleError


class GatedLink(Protocol):
    is_active: bool
    activated_at: datetime | None
    expires_at: datetime | None
    click_limit: int | None
    clicks_count: int


def denial_reason(link: GatedLink, now: datetime) -> str | None:
    """Return the first failing gate, or None when the link is reachable."""
    if not link.is_active:
        return "inactive"
    if is_expired(link, now):
        return "expired"
    if link.activated_at is not None and now < link.activated_at:
        return "not_yet_active"
    if link.click_limit is not None and link.clicks_count >= link.click_limit:
        return "limit_reached"
    return None


def is_accessible(link: GatedLink, now: datetime) -> bool:
    return denial_reason(link, now) is None


def is_expired(link: GatedLink, now: datetime) -> bool:
    return link.expires_at is not None and now > link.expires_at


def ensure_accessible(link: GatedLink, now: datetime) -> None:
    reason = denial_reason(link, now)
    if reason is not None:
        raise InaccessibleError(reason)
