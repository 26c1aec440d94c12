"""JWT issue/verify helpers (HS256, shared secret)."""

import time

from jose import JWTError, jwt

from secad.core.config import settings


async def decode_access_token(token: str) -> dict:
    """Decode and verify an access token. Returns the claims dict."""
    claims = jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        options={"verify_aud": False, "verify_iss": False},
    )
    if claims.get("token_use", "access") != "access":
        raise JWTError("Not an access token")
    return claims


def create_access_token(
    sub: str,
    email: str = "user@example.com",
    name: str | None = None,
    expires_in: int | None = None,
) -> str:
    """Create a signed access token for ``sub``."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "email": email,
        "token_use": "access",
        "iat": now,
        "exp": now + (expires_in or settings.ACCESS_TOKEN_EXPIRE_SECONDS),
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
