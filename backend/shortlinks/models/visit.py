import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shortlinks.db.base import Base, UTCDateTime


class ShortLinkVisit(Base):
    """One recorded click. Never mutated after insert."""

    __tablename__ = "short_link_visits"
    __table_args__ = (
        Index("ix_short_link_visits_link_visited", "short_link_id", "visited_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    short_link_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("short_links.id", ondelete="CASCADE"), nullable=False
    )

    # Network / geo
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 8), nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(11, 8), nullable=True)

    # Client
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    device_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(100), nullable=True)
    platform_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(100), nullable=True)
    browser_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_bot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_mobile: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_tablet: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Referrer
    referer_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    referer_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # UTM the visitor arrived with
    utm_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_term: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_content: Mapped[str | None] = mapped_column(Text, nullable=True)

    query_parameters: Mapped[dict | None] = mapped_column(nullable=True)
    language: Mapped[str | None] = mapped_column(String(10), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    visited_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    short_link: Mapped["ShortLink"] = relationship(back_populates="visits")  # noqa: F821
