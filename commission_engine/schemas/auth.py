"""Authentication schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from commission_engine.models.user import UserRole


class LoginRequest(BaseModel):
    """Login request body."""

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    success: bool
    message: str
    user_id: int
    role: UserRole


class CurrentUserResponse(BaseModel):
    id: int
    username: str
    display_name: str
    email: Optional[str]
    role: UserRole
    last_active_at: Optional[datetime]

    model_config = {"from_attributes": True}
