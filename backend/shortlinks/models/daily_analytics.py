import uuid
from datetime import date as date_type
from datetime import datetime

from sqlalchemy import Date, ForeignKey, Integer, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shortlinks.db.base import Base, UTCDateTime

BREAKDOWN_COLUMNS = (
    "clicks_by_country",
    "clicks_by_city",
    "clicks_by_device",
    "clicks_by_platform",
    "clicks_by_browser",
    "clicks_by_referer",
    "clicks_by_utm_source",
    "clicks_by_utm_medium",
    "clicks_by_utm_campaign",
    "clicks_by_hour",
)


class ShortLinkAnalytics(Base):
    """Daily rollup of visits for one link. Written only by the aggregator."""

    __tablename__ = "short_link_analytics"
    __table_args__ = (
        UniqueConstraint("short_link_id", "date", name="uq_short_link_analytics_link_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    short_link_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("short_links.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)

    total_clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_visitors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    clicks_by_country: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_city: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_device: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_platform: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_browser: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_referer: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_utm_source: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_utm_medium: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_utm_campaign: Mapped[dict | None] = mapped_column(nullable=True)
    clicks_by_hour: Mapped[dict | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, onupdate=func.now())

    short_link: Mapped["ShortLink"] = relationship(back_populates="analytics")  # noqa: F821
