"""Domain errors and RFC 7807 Problem Details error handling."""

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


class ShortLinkError(Exception):
    """Base class for errors raised by the link core."""

    status = 500
    title = "Short link error"


class DuplicateKeyError(ShortLinkError):
    status = 409
    title = "Key already claimed"

    def __init__(self, key: str):
        super().__init__(f"Key '{key}' already exists")
        self.key = key


class KeyExhaustionError(ShortLinkError):
    """Random key generation ran out of attempts; the keyspace is saturated."""

    status = 503
    title = "Key space exhausted"

    def __init__(self, attempts: int):
        super().__init__(f"Failed to generate unique key after {attempts} attempts")
        self.attempts = attempts


class NotFoundError(ShortLinkError):
    status = 404
    title = "Short link not found"

    def __init__(self, key: str):
        super().__init__(f"Short link '{key}' not found")
        self.key = key


class CredentialError(ShortLinkError):
    status = 401
    title = "Password required"

    def __init__(self, detail: str = "Invalid password"):
        super().__init__(detail)


class InaccessibleError(ShortLinkError):
    """The link exists but fails the access gate. ``reason`` names the failing gate."""

    status = 410
    title = "Short link unavailable"

    MESSAGES = {
        "inactive": "This link has been deactivated",
        "expired": "This link has expired",
        "not_yet_active": "This link is not active yet",
        "limit_reached": "This link has reached its click limit",
    }

    def __init__(self, reason: str):
        super().__init__(self.MESSAGES.get(reason, "This link is no longer available"))
        self.reason = reason


class StoreUnavailableError(ShortLinkError):
    status = 503
    title = "Store unavailable"


class ProblemDetailError(Exception):
    """Raise for RFC 7807 problem+json responses."""

    def __init__(
        self,
        status: int,
        title: str,
        detail: str,
        error_type: str | None = None,
    ):
        self.status = status
        self.title = title
        self.detail = detail
        self.error_type = error_type or "about:blank"


def _problem(request: Request, status: int, title: str, detail, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "type": error_type,
            "title": title,
            "status": status,
            "detail": detail,
            "instance": str(request.url.path),
        },
        media_type="application/problem+json",
    )


async def problem_detail_handler(request: Request, exc: ProblemDetailError) -> JSONResponse:
    return _problem(request, exc.status, exc.title, exc.detail, exc.error_type)


async def short_link_error_handler(request: Request, exc: ShortLinkError) -> JSONResponse:
    error_type = "about:blank"
    if isinstance(exc, InaccessibleError):
        error_type = f"urn:shortlinks:inaccessible:{exc.reason}"
    return _problem(request, exc.status, exc.title, str(exc), error_type)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _problem(
        request,
        exc.status_code,
        exc.detail if isinstance(exc.detail, str) else "Error",
        exc.detail,
        "about:blank",
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _problem(request, 422, "Validation Error", exc.errors(), "about:blank")
