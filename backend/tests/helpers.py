"""Shared helpers for API tests."""

from httpx import AsyncClient

from shortlinks.core.security import create_access_token


def make_token(sub: str = "test-sub", email: str = "test@example.com") -> str:
    return create_access_token(sub=sub, email=email)


def auth_headers(sub: str = "test-sub", email: str = "test@example.com") -> dict:
    """Return Authorization headers with a signed JWT."""
    return {"Authorization": f"Bearer {make_token(sub=sub, email=email)}"}


async def create_link(client: AsyncClient, headers: dict | None = None, **body) -> dict:
    """Create a link via the API and return the response body."""
    body.setdefault("destination_url", "https://example.com/landing")
    resp = await client.post("/api/v1/links", json=body, headers=headers or auth_headers())
    assert resp.status_code == 201, resp.text
    return resp.json()
