"""Authenticated management endpoints for short links."""

import uuid
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, Query

from shortlinks.core.dependencies import get_current_owner, get_link_manager
from shortlinks.core.exceptions import NotFoundError, ProblemDetailError
from shortlinks.models.link import ShortLink
from shortlinks.schemas.analytics import DailyAnalyticsResponse, LinkSummaryResponse
from shortlinks.schemas.common import PaginatedResponse
from shortlinks.schemas.link import LinkCreate, LinkResponse, LinkUpdate, QrCodeResponse
from shortlinks.services import reporting
from shortlinks.services.link_manager import EntityRef, LinkManager, LinkSpec

router = APIRouter()

DEFAULT_PAGE_SIZE = 20


def _response(manager: LinkManager, link: ShortLink) -> LinkResponse:
    return LinkResponse(
        id=link.id,
        key=link.key,
        short_url=manager.get_short_url(link),
        destination_url=link.destination_url,
        title=link.title,
        description=link.description,
        password_protected=link.password_protected,
        is_active=link.is_active,
        activated_at=link.activated_at,
        expires_at=link.expires_at,
        click_limit=link.click_limit,
        clicks_count=link.clicks_count,
        utm_parameters=link.utm_parameters,
        redirect_status_code=link.redirect_status_code,
        tags=link.tags,
        group=link.group,
        first_clicked_at=link.first_clicked_at,
        last_clicked_at=link.last_clicked_at,
        created_at=link.created_at,
    )


def _encode_cursor(link: ShortLink) -> str:
    return f"{link.created_at.isoformat()}|{link.id}"


def _decode_cursor(cursor: str) -> tuple[datetime, uuid.UUID]:
    try:
        dt_str, id_str = cursor.split("|", 1)
        return datetime.fromisoformat(dt_str), uuid.UUID(id_str)
    except (ValueError, AttributeError) as exc:
        raise ProblemDetailError(
            400, "Invalid cursor", f"Cannot decode cursor {cursor!r}"
        ) from exc


async def _owned_link(key: str, manager: LinkManager, owner: EntityRef) -> ShortLink:
    """Fetch a link the caller owns. Someone else's link looks like a missing one."""
    link = await manager.store.find_link_by_key(key)
    if link is None or (link.owner_kind, link.owner_id) != (owner.kind, owner.id):
        raise NotFoundError(key)
    return link


@router.get("", response_model=PaginatedResponse[LinkResponse])
async def list_links(
    group: str | None = Query(None),
    cursor: str | None = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    owner: EntityRef = Depends(get_current_owner),
    manager: LinkManager = Depends(get_link_manager),
) -> PaginatedResponse[LinkResponse]:
    rows = await manager.store.list_links(
        owner_kind=owner.kind,
        owner_id=owner.id,
        group=group,
        cursor=_decode_cursor(cursor) if cursor is not None else None,
        limit=limit + 1,
    )

    has_more = len(rows) > limit
    items = rows[:limit]

    return PaginatedResponse(
        items=[_response(manager, link) for link in items],
        next_cursor=_encode_cursor(items[-1]) if has_more and items else None,
        has_more=has_more,
    )


@router.post("", response_model=LinkResponse, status_code=201)
async def create_link(
    body: LinkCreate,
    owner: EntityRef = Depends(get_current_owner),
    manager: LinkManager = Depends(get_link_manager),
) -> LinkResponse:
    data = body.model_dump(exclude_unset=True)
    data["destination_url"] = str(body.destination_url)
    link = await manager.create(LinkSpec(**data, owner=owner))
    return _response(manager, link)


@router.get("/{key}", response_model=LinkResponse)
async def get_link(
    key: str,
    owner: EntityRef = Depends(get_current_owner),
    manager: LinkManager = Depends(get_link_manager),
) -> LinkResponse:
    link = await _owned_link(key, manager, owner)
    return _response(manager, link)


@router.patch("/{key}", response_model=LinkResponse)
async def update_link(
    key: str,
    body: LinkUpdate,
    owner: EntityRef = Depends(get_current_owner),
    manager: LinkManager = Depends(get_link_manager),
) -> LinkResponse:
    link = await _owned_link(key, manager, owner)

    changes = body.model_dump(exclude_unset=True)
    if body.destination_url is not None:
        changes["destination_url"] = str(body.destination_url)
    link = await manager.update(link, changes)
    return _response(manager, link)


@router.delete("/{key}", status_code=204)
async def delete_link(
    key: str,
    owner: EntityRef = Depends(get_current_owner),
    manager: LinkManager = Depends(get_link_manager),
) -> None:
    link = await _owned_link(key, manager, owner)
    await manager.delete(link)


@router.get("/{key}/analytics", response_model=LinkSummaryResponse)
async def get_link_analytics(
    key: str,
    owner: EntityRef = Depends(get_current_owner),
    manager: LinkManager = Depends(get_link_manager),
) -> LinkSummaryResponse:
    link = await _owned_link(key, manager, owner)
    summary = await reporting.link_summary(manager.store, link, manager.clock.now())
    return LinkSummaryResponse.model_validate(summary)


@router.get("/{key}/daily", response_model=list[DailyAnalyticsResponse])
async def get_link_daily_analytics(
    key: str,
    start: date | None = Query(None),
    end: date | None = Query(None),
    owner: EntityRef = Depends(get_current_owner),
    manager: LinkManager = Depends(get_link_manager),
) -> list[DailyAnalyticsResponse]:
    link = await _owned_link(key, manager, owner)
    end = end or manager.clock.now().date()
    start = start or end - timedelta(days=29)
    if start > end:
        raise ProblemDetailError(400, "Invalid date range", "start must not be after end")

    # The owner sees hidden UTM breakdowns too.
    rows = await reporting.daily_series(manager.store, link, start, end, include_hidden=True)
    return [DailyAnalyticsResponse.model_validate(row) for row in rows]


@router.post("/{key}/qr-code", response_model=QrCodeResponse)
async def create_qr_code(
    key: str,
    owner: EntityRef = Depends(get_current_owner),
    manager: LinkManager = Depends(get_link_manager),
) -> QrCodeResponse:
    link = await _owned_link(key, manager, owner)
    if manager.qr_renderer is None or manager.qr_storage is None:
        raise ProblemDetailError(503, "QR codes unavailable", "QR codes are not configured")

    qr_code_url = await manager.generate_qr_code(link)
    if qr_code_url is None:
        raise ProblemDetailError(
            502, "QR code generation failed", f"Could not render a QR code for {key}"
        )
    return QrCodeResponse(qr_code_url=qr_code_url, short_url=manager.get_short_url(link))
