from shortlinks.models.daily_analytics import ShortLinkAnalytics
from shortlinks.models.link import ShortLink
from shortlinks.models.visit import ShortLinkVisit

__all__ = [
    "ShortLink",
    "ShortLinkAnalytics",
    "ShortLinkVisit",
]
