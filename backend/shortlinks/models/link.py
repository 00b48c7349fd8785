import uuid
from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shortlinks.db.base import Base, UTCDateTime


class ShortLink(Base):
    __tablename__ = "short_links"
    __table_args__ = (
        Index("ix_short_links_owner", "owner_kind", "owner_id"),
        Index("ix_short_links_attached", "attached_kind", "attached_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Unique across live and tombstoned rows: a claimed key is never reused.
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    destination_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    password: Mapped[str | None] = mapped_column(Text, nullable=True)
    password_protected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    click_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    clicks_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    track_visits: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_ip_address: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_user_agent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_referer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_geo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    utm_parameters: Mapped[dict | None] = mapped_column(nullable=True)
    utm_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    redirect_status_code: Mapped[int] = mapped_column(Integer, nullable=False, default=302)

    custom_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    qr_code_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Tagged references; resolving them to entities is the caller's business.
    owner_kind: Mapped[str | None] = mapped_column(String(100), nullable=True)
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attached_kind: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attached_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    metadata_: Mapped[dict | None] = mapped_column("metadata", nullable=True)
    tags: Mapped[list | None] = mapped_column(nullable=True)
    group: Mapped[str | None] = mapped_column("group", String(100), nullable=True, index=True)

    first_clicked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_clicked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, onupdate=func.now())
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    visits: Mapped[list["ShortLinkVisit"]] = relationship(  # noqa: F821
        back_populates="short_link", cascade="all, delete-orphan", passive_deletes=True
    )
    analytics: Mapped[list["ShortLinkAnalytics"]] = relationship(  # noqa: F821
        back_populates="short_link", cascade="all, delete-orphan", passive_deletes=True
    )
