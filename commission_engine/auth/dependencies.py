"""
FastAPI dependencies for authentication.
"""

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.auth.jwt import get_token_from_cookie, verify_token
from commission_engine.config import settings
from commission_engine.db import get_db
from commission_engine.models import User, UserRole
from commission_engine.services.ledger import Actor
from commission_engine.utils.audit import get_client_ip


async def _user_from_request(request: Request, db: AsyncSession) -> Optional[User]:
    token = get_token_from_cookie(request)
    if not token:
        return None
    payload = verify_token(token)
    if not payload:
        return None
    result = await db.execute(select(User).where(User.id == payload["user_id"]))
    return result.scalar_one_or_none()


async def get_current_user_optional(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """
    Get current user from JWT cookie if present.

    Returns None if no valid token found (doesn't raise error).
    """
    user = await _user_from_request(request, db)
    if not user or not user.is_active:
        return None
    return user


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get current authenticated user.

    Raises 401 if not authenticated, 403 if the account is disabled.
    """
    if not get_token_from_cookie(request):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    user = await _user_from_request(request, db)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user


async def require_organizer(
    current_user: User = Depends(get_current_user),
) -> User:
    """Raises 403 unless the current user is an organizer."""
    if current_user.role != UserRole.ORGANIZER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organizer access required",
        )
    return current_user


async def require_agent(
    current_user: User = Depends(get_current_user),
) -> User:
    """Raises 403 unless the current user is an agent."""
    if current_user.role != UserRole.AGENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Agent access required",
        )
    return current_user


async def organizer_actor(
    request: Request,
    current_user: User = Depends(require_organizer),
) -> Actor:
    """Ledger actor for the calling organizer, with client IP for the audit trail."""
    return Actor.organizer(current_user.id, get_client_ip(request))


async def agent_actor(
    request: Request,
    current_user: User = Depends(require_agent),
) -> Actor:
    return Actor.agent(current_user.id, get_client_ip(request))


async def require_ingest_key(
    x_ingest_key: Optional[str] = Header(None, alias="X-Ingest-Key"),
) -> None:
    """Shared-secret check for sale events from the checkout subsystem."""
    if not x_ingest_key or not secrets.compare_digest(x_ingest_key, settings.ingest_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid ingest key",
        )
