"""Authentication helpers.

Session and login flows live outside this service; callers present a
bearer JWT signed with ``SECRET_KEY`` (HS256 by default) whose ``sub``
claim is the numeric user id.  ``get_current_user`` verifies the token
with python-jose and loads the matching ``User`` row.

``DEV_AUTH_BYPASS`` short-circuits verification and resolves (or
creates) a local development user.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.core.config import settings
from reimburseme.core.database import get_db
from reimburseme.core.exceptions import AuthorizationError
from reimburseme.models.enums import PlanType
from reimburseme.models.tables import User

DEV_USER_EMAIL = "dev@example.com"

auth_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, expires_in: dt.timedelta = dt.timedelta(hours=1)) -> str:
    """Issue a token for ``user_id`` (used by tests and local tooling)."""
    now = dt.datetime.now(dt.timezone.utc)
    claims = {"sub": str(user_id), "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry of ``token`` and return its claims."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise AuthorizationError("Invalid token") from exc


async def _get_dev_user(db: AsyncSession) -> User:
    # Look up or create a dev user with a stable email
    user = await db.scalar(select(User).where(User.email == DEV_USER_EMAIL))
    if user is None:
        user = User(email=DEV_USER_EMAIL, name="Dev User", plan=PlanType.FREE)
        db.add(user)
        await db.commit()
        await db.refresh(user)
    return user


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> User:
    """Resolve the current authenticated user or raise ``AuthorizationError``."""
    if settings.DEV_AUTH_BYPASS:
        return await _get_dev_user(db)

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthorizationError("Missing bearer token")
    payload = decode_access_token(credentials.credentials)
    sub = payload.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError) as exc:
        raise AuthorizationError("Invalid token subject") from exc

    user = await db.get(User, user_id)
    if user is None:
        raise AuthorizationError("Unknown user")
    return user
