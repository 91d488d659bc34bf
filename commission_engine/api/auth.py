"""
Authentication API endpoints.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.auth.dependencies import get_current_user, get_current_user_optional
from commission_engine.auth.jwt import clear_auth_cookie, create_access_token, set_auth_cookie
from commission_engine.db import get_db
from commission_engine.models import User
from commission_engine.schemas.auth import CurrentUserResponse, LoginRequest, LoginResponse
from commission_engine.utils.password import verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=LoginResponse)
async def login(
    response: Response,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate an organizer or agent and set the JWT cookie."""
    result = await db.execute(
        select(User).where(User.username == credentials.username)
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(credentials.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )

    token = create_access_token(user.id, user.role.value)
    set_auth_cookie(response, token)

    user.last_active_at = datetime.now(timezone.utc)
    logger.info(f"User {user.id} ({user.role.value}) logged in")

    return LoginResponse(
        success=True,
        message="Login successful",
        user_id=user.id,
        role=user.role,
    )


@router.post("/logout")
async def logout(
    response: Response,
    current_user: User = Depends(get_current_user_optional),
):
    if current_user:
        logger.info(f"User {current_user.id} logged out")
    clear_auth_cookie(response)
    return {"success": True, "message": "Logged out"}


@router.get("/me", response_model=CurrentUserResponse)
async def me(current_user: User = Depends(get_current_user)):
    return current_user
