"""FastAPI dependency chain: JWT → User → entity access."""

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from secad.core.security import decode_access_token
from secad.db.session import async_session_factory
from secad.models.user import User
from secad.models.user_entity_access import UserEntityAccess

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_HIERARCHY = {"owner": 3, "admin": 2, "member": 1}


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session. Commits on success, rolls back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_current_user_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    """Extract and verify the Bearer token, returning JWT claims."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    try:
        claims = await decode_access_token(credentials.credentials)
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}") from e

    return claims


async def get_current_user(
    claims: dict = Depends(get_current_user_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the token subject to a User row, provisioning it on first sight."""
    auth_sub = claims.get("sub")
    if not auth_sub:
        raise HTTPException(status_code=401, detail="Token missing sub claim")

    result = await db.execute(select(User).where(User.auth_sub == auth_sub))
    user = result.scalar_one_or_none()

    if user is None:
        email = claims.get("email", f"{auth_sub}@placeholder.local")
        user = User(
            auth_sub=auth_sub,
            email=email,
            full_name=claims.get("name", email),
        )
        db.add(user)
        await db.flush()

    if not user.is_active:
        raise HTTPException(status_code=403, detail="User account is deactivated")

    return user


async def require_entity_role(
    min_role: str,
    db: AsyncSession,
    entity_id: uuid.UUID,
    user: User,
) -> UserEntityAccess:
    """Check the user holds at least ``min_role`` on ``entity_id``.

    Raises 403 both for no access and for an insufficient role, so callers
    cannot probe which entities exist.
    """
    result = await db.execute(
        select(UserEntityAccess).where(
            UserEntityAccess.entity_id == entity_id,
            UserEntityAccess.user_id == user.id,
        )
    )
    access = result.scalar_one_or_none()

    if access is None:
        raise HTTPException(status_code=403, detail="Access denied to entity")

    if ROLE_HIERARCHY.get(access.role, 0) < ROLE_HIERARCHY.get(min_role, 0):
        raise HTTPException(status_code=403, detail=f"Requires {min_role} role or higher")

    return access
