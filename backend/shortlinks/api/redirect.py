"""Public redirect surface: ``GET /{prefix}/{key}`` and the password unlock."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from shortlinks.core.dependencies import get_link_manager, get_visit_recorder
from shortlinks.core.exceptions import CredentialError
from shortlinks.models.link import ShortLink
from shortlinks.schemas.common import ErrorResponse
from shortlinks.schemas.link import PasswordUnlockRequest
from shortlinks.services.link_manager import LinkManager
from shortlinks.services.visit_recorder import RequestContext, VisitRecorder

logger = logging.getLogger(__name__)

router = APIRouter()

_ERRORS = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    410: {"model": ErrorResponse},
}


def client_ip(request: Request) -> str | None:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def request_context_from(request: Request) -> RequestContext:
    language = request.headers.get("Accept-Language")
    if language:
        language = language.split(",")[0].split(";")[0].strip() or None
    return RequestContext(
        ip=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        referer=request.headers.get("Referer"),
        query_params=dict(request.query_params),
        language=language,
        timezone=request.headers.get("X-Timezone"),
        session_id=request.cookies.get("session_id"),
    )


async def _visit_and_redirect(
    link: ShortLink,
    request: Request,
    manager: LinkManager,
    recorder: VisitRecorder,
) -> RedirectResponse:
    await recorder.record(link, request_context_from(request))

    extra = {}
    if manager.config.utm.enabled and not (link.utm_parameters or {}).get("utm_campaign"):
        extra["utm_campaign"] = link.key
    url = manager.get_destination_url(link, extra)

    logger.debug("Redirecting %s to %s", link.key, url)
    return RedirectResponse(url, status_code=link.redirect_status_code)


@router.get("/{key}", responses=_ERRORS)
async def follow_link(
    key: str,
    request: Request,
    manager: LinkManager = Depends(get_link_manager),
    recorder: VisitRecorder = Depends(get_visit_recorder),
) -> RedirectResponse:
    link = await manager.resolve(key)
    if link.password_protected:
        raise CredentialError("Password required")
    return await _visit_and_redirect(link, request, manager, recorder)


@router.post("/{key}/unlock", responses=_ERRORS)
async def unlock_link(
    key: str,
    body: PasswordUnlockRequest,
    request: Request,
    manager: LinkManager = Depends(get_link_manager),
    recorder: VisitRecorder = Depends(get_visit_recorder),
) -> RedirectResponse:
    link = await manager.resolve(key)
    manager.check_password(link, body.password)
    return await _visit_and_redirect(link, request, manager, recorder)
