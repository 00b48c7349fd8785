"""Persistence for links, visits and daily rollups.

``Store`` is the narrow interface the link core depends on; ``SqlAlchemyStore``
implements it on an ``AsyncSession``. Two operations rely on the database for
atomicity rather than on in-process logic:

* key reservation is a plain INSERT guarded by the unique constraint on
  ``short_links.key`` (run inside a SAVEPOINT so a conflict does not poison the
  surrounding transaction);
* click counting is a single ``UPDATE ... SET clicks_count = clicks_count + 1``.
"""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import Uuid, delete, distinct, func, literal, select, tuple_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.core.exceptions import DuplicateKeyError, StoreUnavailableError
from shortlinks.db.types import UTCDateTime
from shortlinks.models.daily_analytics import ShortLinkAnalytics
from shortlinks.models.link import ShortLink
from shortlinks.models.visit import ShortLinkVisit

STALE_LINK_KEYS = "stale_link_keys"


@dataclass(frozen=True)
class ClickCounters:
    clicks_count: int
    first_clicked_at: datetime | None
    last_clicked_at: datetime | None


class Store(Protocol):
    async def insert_link(self, fields: dict[str, Any]) -> ShortLink: ...

    async def find_link_by_key(self, key: str) -> ShortLink | None: ...

    async def find_link_by_attachment(self, kind: str, ref: str) -> ShortLink | None: ...

    async def link_key_exists(self, key: str) -> bool: ...

    async def update_link(self, link_id: uuid.UUID, fields: dict[str, Any]) -> None: ...

    async def atomic_increment_clicks(
        self, link_id: uuid.UUID, now: datetime
    ) -> ClickCounters: ...

    async def soft_delete_link(self, link_id: uuid.UUID, now: datetime) -> None: ...

    def mark_stale(self, key: str) -> None: ...

    async def insert_visit(self, fields: dict[str, Any]) -> ShortLinkVisit: ...

    async def query_visits(
        self, link_id: uuid.UUID, start: datetime, end: datetime
    ) -> list[ShortLinkVisit]: ...

    async def upsert_daily_analytics(
        self, link_id: uuid.UUID, day: date, fields: dict[str, Any]
    ) -> None: ...


class SqlAlchemyStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        """Surface database failures as ``StoreUnavailableError``."""
        try:
            yield
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    def mark_stale(self, key: str) -> None:
        """Queue ``key`` for a cache drop once the surrounding transaction commits."""
        self.session.info.setdefault(STALE_LINK_KEYS, set()).add(key)

    def _dialect(self) -> str:
        return self.session.get_bind().dialect.name

    # ── Links ────────────────────────────────────────────────────────────

    async def insert_link(self, fields: dict[str, Any]) -> ShortLink:
        link = ShortLink(**fields)
        try:
            async with self.session.begin_nested():
                self.session.add(link)
                await self.session.flush()
            await self.session.refresh(link)
        except IntegrityError as exc:
            # The savepoint is gone, so the session can still answer this.
            key = fields.get("key")
            if key and await self.link_key_exists(key):
                raise DuplicateKeyError(key) from exc
            raise StoreUnavailableError(str(exc)) from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return link

    async def find_link_by_key(self, key: str) -> ShortLink | None:
        async with self._guard():
            result = await self.session.execute(
                select(ShortLink)
                .where(ShortLink.key == key, ShortLink.deleted_at.is_(None))
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def find_link_by_attachment(self, kind: str, ref: str) -> ShortLink | None:
        async with self._guard():
            result = await self.session.execute(
                select(ShortLink)
                .where(
                    ShortLink.attached_kind == kind,
                    ShortLink.attached_id == ref,
                    ShortLink.deleted_at.is_(None),
                )
                .order_by(ShortLink.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def link_key_exists(self, key: str) -> bool:
        """Tombstoned rows count: a key is never handed out twice."""
        async with self._guard():
            result = await self.session.execute(
                select(ShortLink.id).where(ShortLink.key == key).limit(1)
            )
            return result.first() is not None

    async def update_link(self, link_id: uuid.UUID, fields: dict[str, Any]) -> None:
        if not fields:
            return
        async with self._guard():
            await self.session.execute(
                update(ShortLink)
                .where(ShortLink.id == link_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )

    async def atomic_increment_clicks(self, link_id: uuid.UUID, now: datetime) -> ClickCounters:
        async with self._guard():
            result = await self.session.execute(
                update(ShortLink)
                .where(ShortLink.id == link_id)
                .values(
                    clicks_count=ShortLink.clicks_count + 1,
                    first_clicked_at=func.coalesce(
                        ShortLink.first_clicked_at, literal(now, UTCDateTime())
                    ),
                    last_clicked_at=now,
                )
                .returning(
                    ShortLink.clicks_count,
                    ShortLink.first_clicked_at,
                    ShortLink.last_clicked_at,
                )
                .execution_options(synchronize_session=False)
            )
            row = result.one()
        return ClickCounters(
            clicks_count=row.clicks_count,
            first_clicked_at=row.first_clicked_at,
            last_clicked_at=row.last_clicked_at,
        )

    async def reset_clicks(self, link_id: uuid.UUID) -> None:
        """Administrative reset; the only path that lowers ``clicks_count``."""
        await self.update_link(
            link_id, {"clicks_count": 0, "first_clicked_at": None, "last_clicked_at": None}
        )

    async def soft_delete_link(self, link_id: uuid.UUID, now: datetime) -> None:
        await self.update_link(link_id, {"deleted_at": now, "is_active": False})

    async def list_links(
        self,
        *,
        owner_kind: str | None = None,
        owner_id: str | None = None,
        group: str | None = None,
        cursor: tuple[datetime, uuid.UUID] | None = None,
        limit: int = 20,
    ) -> list[ShortLink]:
        stmt = (
            select(ShortLink)
            .where(ShortLink.deleted_at.is_(None))
            .order_by(ShortLink.created_at.desc(), ShortLink.id.desc())
        )
        if owner_kind is not None:
            stmt = stmt.where(ShortLink.owner_kind == owner_kind, ShortLink.owner_id == owner_id)
        if group is not None:
            stmt = stmt.where(ShortLink.group == group)
        if cursor is not None:
            created_at, link_id = cursor
            stmt = stmt.where(
                tuple_(ShortLink.created_at, ShortLink.id)
                < tuple_(literal(created_at, UTCDateTime()), literal(link_id, Uuid()))
            )
        async with self._guard():
            result = await self.session.execute(stmt.limit(limit))
            return list(result.scalars().all())

    # ── Visits ───────────────────────────────────────────────────────────

    async def insert_visit(self, fields: dict[str, Any]) -> ShortLinkVisit:
        visit = ShortLinkVisit(**fields)
        async with self._guard():
            self.session.add(visit)
            await self.session.flush()
        return visit

    async def query_visits(
        self, link_id: uuid.UUID, start: datetime, end: datetime
    ) -> list[ShortLinkVisit]:
        """Visits with ``start <= visited_at < end``, oldest first."""
        async with self._guard():
            result = await self.session.execute(
                select(ShortLinkVisit)
                .where(
                    ShortLinkVisit.short_link_id == link_id,
                    ShortLinkVisit.visited_at >= start,
                    ShortLinkVisit.visited_at < end,
                )
                .order_by(ShortLinkVisit.visited_at, ShortLinkVisit.id)
            )
            return list(result.scalars().all())

    async def count_visits(self, link_id: uuid.UUID, since: datetime | None = None) -> int:
        stmt = select(func.count(ShortLinkVisit.id)).where(
            ShortLinkVisit.short_link_id == link_id
        )
        if since is not None:
            stmt = stmt.where(ShortLinkVisit.visited_at >= since)
        async with self._guard():
            result = await self.session.execute(stmt)
            return result.scalar_one()

    async def count_distinct_ips(self, link_id: uuid.UUID) -> int:
        async with self._guard():
            result = await self.session.execute(
                select(func.count(distinct(ShortLinkVisit.ip_address))).where(
                    ShortLinkVisit.short_link_id == link_id
                )
            )
            return result.scalar_one()

    async def top_values(
        self, link_id: uuid.UUID, columns: tuple[str, ...], limit: int | None = 10
    ) -> list[dict[str, Any]]:
        """Click counts grouped by ``columns`` (null first column excluded), busiest first."""
        group = [getattr(ShortLinkVisit, name) for name in columns]
        clicks = func.count(ShortLinkVisit.id).label("clicks")
        stmt = (
            select(*group, clicks)
            .where(ShortLinkVisit.short_link_id == link_id, group[0].is_not(None))
            .group_by(*group)
            .order_by(clicks.desc(), *group)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._guard():
            result = await self.session.execute(stmt)
            return [dict(row._mapping) for row in result.all()]

    async def link_ids_with_visits(self, start: datetime, end: datetime) -> list[uuid.UUID]:
        async with self._guard():
            result = await self.session.execute(
                select(distinct(ShortLinkVisit.short_link_id)).where(
                    ShortLinkVisit.visited_at >= start,
                    ShortLinkVisit.visited_at < end,
                )
            )
            return list(result.scalars().all())

    async def prune_visits(self, before: datetime) -> int:
        async with self._guard():
            result = await self.session.execute(
                delete(ShortLinkVisit)
                .where(ShortLinkVisit.visited_at < before)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    # ── Daily rollups ────────────────────────────────────────────────────

    async def upsert_daily_analytics(
        self, link_id: uuid.UUID, day: date, fields: dict[str, Any]
    ) -> None:
        dialect = self._dialect()
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            await self._upsert_daily_analytics_fallback(link_id, day, fields)
            return

        stmt = insert(ShortLinkAnalytics).values(
            id=uuid.uuid4(), short_link_id=link_id, date=day, **fields
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["short_link_id", "date"],
            set_={**fields, "updated_at": func.now()},
        )
        async with self._guard():
            await self.session.execute(stmt)

    async def _upsert_daily_analytics_fallback(
        self, link_id: uuid.UUID, day: date, fields: dict[str, Any]
    ) -> None:
        async with self._guard():
            result = await self.session.execute(
                select(ShortLinkAnalytics).where(
                    ShortLinkAnalytics.short_link_id == link_id,
                    ShortLinkAnalytics.date == day,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                self.session.add(ShortLinkAnalytics(short_link_id=link_id, date=day, **fields))
            else:
                for name, value in fields.items():
                    setattr(row, name, value)
            await self.session.flush()

    async def get_daily_analytics(
        self, link_id: uuid.UUID, start: date, end: date
    ) -> list[ShortLinkAnalytics]:
        """Rollups with ``start <= date <= end``, oldest first."""
        async with self._guard():
            result = await self.session.execute(
                select(ShortLinkAnalytics)
                .where(
                    ShortLinkAnalytics.short_link_id == link_id,
                    ShortLinkAnalytics.date >= start,
                    ShortLinkAnalytics.date <= end,
                )
                .order_by(ShortLinkAnalytics.date)
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all())
