"""IP geolocation over HTTP.

The lookup is optional and off by default (``TRACK_GEO``). Any failure,
including a timeout, yields ``None`` so visit recording never depends on it.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

_LOCAL_ADDRESSES = frozenset({"127.0.0.1", "::1", "localhost"})


@dataclass(frozen=True)
class Location:
    country: str | None = None
    country_code: str | None = None
    city: str | None = None
    region: str | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None


class GeoLookup(Protocol):
    async def lookup(self, ip: str) -> Location | None: ...


class HttpGeoLookup:
    """Client for ip-api.com style JSON endpoints (``url_template`` contains ``{ip}``)."""

    def __init__(
        self,
        url_template: str,
        timeout: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url_template = url_template
        self.timeout = timeout
        self.transport = transport

    async def lookup(self, ip: str) -> Location | None:
        if not ip or ip in _LOCAL_ADDRESSES:
            return None
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(self.url_template.format(ip=ip))
                resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Geo lookup failed for %s", ip, exc_info=True)
            return None

        if data.get("status") == "fail":
            return None
        return Location(
            country=data.get("country"),
            country_code=data.get("countryCode"),
            city=data.get("city"),
            region=data.get("regionName") or data.get("region"),
            latitude=_decimal(data.get("lat")),
            longitude=_decimal(data.get("lon")),
        )


def _decimal(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))
