"""User and ownership models."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import UserRole


class UserCreate(BaseModel):
    email: str = Field(..., description="Login email, stored lower-cased")
    password: str = Field(..., min_length=6, repr=False)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., repr=False)


class User(BaseModel):
    id: str
    email: str
    role: UserRole = UserRole.USER
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class LoginResponse(BaseModel):
    token: str
    user: User


class Ownership(BaseModel):
    """Who may manage an instance, plus the secret captured at creation."""

    instance_id: str
    user_id: str
    password: str | None = Field(default=None, repr=False)
    assigned_at: datetime
