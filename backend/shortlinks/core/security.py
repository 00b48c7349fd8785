"""Bearer tokens for the management API (HS256, python-jose).

The token subject identifies the link owner. Issuing tokens belongs to the
surrounding platform; ``create_access_token`` exists for local use and tests.
"""

import time

from jose import JWTError, jwt

from shortlinks.core.config import settings

ALGORITHM = "HS256"


def decode_access_token(token: str) -> dict:
    """Decode and verify an access token. Returns the claims dict."""
    claims = jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[ALGORITHM],
        options={"verify_aud": False, "verify_iss": False},
    )
    if claims.get("token_use", "access") != "access":
        raise JWTError("Not an access token")
    return claims


def create_access_token(
    sub: str,
    email: str | None = None,
    expires_in: int = 900,
) -> str:
    payload = {
        "sub": sub,
        "token_use": "access",
        "iat": int(time.time()),
        "exp": int(time.time()) + expires_in,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)
