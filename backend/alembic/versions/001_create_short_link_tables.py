"""create short link tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- short_links ---
    op.create_table(
        "short_links",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("destination_url", sa.Text(), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("password", sa.Text(), nullable=True),
        sa.Column("password_protected", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("click_limit", sa.Integer(), nullable=True),
        sa.Column("clicks_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("track_visits", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("track_ip_address", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("track_user_agent", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("track_referer", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("track_geo", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("utm_parameters", JSONB(), nullable=True),
        sa.Column("utm_hidden", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("redirect_status_code", sa.Integer(), nullable=False, server_default="302"),
        sa.Column("custom_domain", sa.String(255), nullable=True),
        sa.Column("qr_code_path", sa.Text(), nullable=True),
        sa.Column("owner_kind", sa.String(100), nullable=True),
        sa.Column("owner_id", sa.String(255), nullable=True),
        sa.Column("attached_kind", sa.String(100), nullable=True),
        sa.Column("attached_id", sa.String(255), nullable=True),
        sa.Column("metadata", JSONB(), nullable=True),
        sa.Column("tags", JSONB(), nullable=True),
        sa.Column("group", sa.String(100), nullable=True),
        sa.Column("first_clicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_clicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("key", name="short_links_key_key"),
    )
    op.create_index("ix_short_links_expires_at", "short_links", ["expires_at"])
    op.create_index("ix_short_links_group", "short_links", ["group"])
    op.create_index("ix_short_links_owner", "short_links", ["owner_kind", "owner_id"])
    op.create_index("ix_short_links_attached", "short_links", ["attached_kind", "attached_id"])

    # --- short_link_visits ---
    op.create_table(
        "short_link_visits",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "short_link_id",
            sa.UUID(),
            sa.ForeignKey("short_links.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("country_code", sa.String(2), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("region", sa.String(100), nullable=True),
        sa.Column("latitude", sa.Numeric(10, 8), nullable=True),
        sa.Column("longitude", sa.Numeric(11, 8), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("device_type", sa.String(20), nullable=True),
        sa.Column("device_name", sa.String(100), nullable=True),
        sa.Column("platform", sa.String(100), nullable=True),
        sa.Column("platform_version", sa.String(50), nullable=True),
        sa.Column("browser", sa.String(100), nullable=True),
        sa.Column("browser_version", sa.String(50), nullable=True),
        sa.Column("is_bot", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_mobile", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_tablet", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("referer_url", sa.Text(), nullable=True),
        sa.Column("referer_domain", sa.String(255), nullable=True),
        sa.Column("utm_source", sa.Text(), nullable=True),
        sa.Column("utm_medium", sa.Text(), nullable=True),
        sa.Column("utm_campaign", sa.Text(), nullable=True),
        sa.Column("utm_term", sa.Text(), nullable=True),
        sa.Column("utm_content", sa.Text(), nullable=True),
        sa.Column("query_parameters", JSONB(), nullable=True),
        sa.Column("language", sa.String(10), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("visited_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_short_link_visits_link_visited", "short_link_visits", ["short_link_id", "visited_at"]
    )
    op.create_index("ix_short_link_visits_ip_address", "short_link_visits", ["ip_address"])
    op.create_index("ix_short_link_visits_visited_at", "short_link_visits", ["visited_at"])

    # --- short_link_analytics ---
    op.create_table(
        "short_link_analytics",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "short_link_id",
            sa.UUID(),
            sa.ForeignKey("short_links.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_visitors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("clicks_by_country", JSONB(), nullable=True),
        sa.Column("clicks_by_city", JSONB(), nullable=True),
        sa.Column("clicks_by_device", JSONB(), nullable=True),
        sa.Column("clicks_by_platform", JSONB(), nullable=True),
        sa.Column("clicks_by_browser", JSONB(), nullable=True),
        sa.Column("clicks_by_referer", JSONB(), nullable=True),
        sa.Column("clicks_by_utm_source", JSONB(), nullable=True),
        sa.Column("clicks_by_utm_medium", JSONB(), nullable=True),
        sa.Column("clicks_by_utm_campaign", JSONB(), nullable=True),
        sa.Column("clicks_by_hour", JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("short_link_id", "date", name="uq_short_link_analytics_link_date"),
    )
    op.create_index("ix_short_link_analytics_date", "short_link_analytics", ["date"])


def downgrade() -> None:
    op.drop_table("short_link_analytics")
    op.drop_table("short_link_visits")
    op.drop_table("short_links")
