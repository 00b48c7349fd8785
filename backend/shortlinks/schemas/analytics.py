"""Analytics response schemas."""

from datetime import date, datetime

from pydantic import BaseModel


class CountryClicks(BaseModel):
    country: str
    country_code: str | None = None
    clicks: int


class BrowserClicks(BaseModel):
    browser: str
    clicks: int


class PlatformClicks(BaseModel):
    platform: str
    clicks: int


class DeviceTypeClicks(BaseModel):
    device_type: str
    clicks: int


class LinkSummaryResponse(BaseModel):
    total_clicks: int
    unique_clicks: int
    clicks_today: int
    clicks_this_week: int
    clicks_this_month: int
    first_clicked_at: datetime | None = None
    last_clicked_at: datetime | None = None
    top_countries: list[CountryClicks] = []
    top_browsers: list[BrowserClicks] = []
    top_platforms: list[PlatformClicks] = []
    device_types: list[DeviceTypeClicks] = []


class DailyAnalyticsResponse(BaseModel):
    date: date
    total_clicks: int
    unique_clicks: int
    unique_visitors: int
    clicks_by_country: dict[str, int] = {}
    clicks_by_city: dict[str, int] = {}
    clicks_by_device: dict[str, int] = {}
    clicks_by_browser: dict[str, int] = {}
    clicks_by_platform: dict[str, int] = {}
    clicks_by_referer: dict[str, int] = {}
    clicks_by_utm_source: dict[str, int] | None = None
    clicks_by_utm_medium: dict[str, int] | None = None
    clicks_by_utm_campaign: dict[str, int] | None = None
    clicks_by_hour: dict[str, int] = {}
