"""Pydantic schemas for issued tokens."""

from __future__ import annotations

from pydantic import BaseModel

from authcore.schemas.user import UserSummary


class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"
    user: UserSummary


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None
