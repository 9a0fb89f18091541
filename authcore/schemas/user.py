"""Pydantic schemas for users and resolved callers."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from authcore.core.security import Role


class UserSummary(BaseModel):
    """Public view returned after login; nothing internal."""

    id: str
    phone: str
    role: Role
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None

    model_config = {"from_attributes": True}


class UserRead(UserSummary):
    is_active: bool
    last_login_at: datetime | None
    created_at: datetime | None


class CallerRead(BaseModel):
    id: str
    is_anonymous: bool
    phone: str | None = None
    role: Role | None = None
    session_id: str | None = None

    model_config = {"from_attributes": True}


class ProfileUpdate(BaseModel):
    """Self-service profile fields; omitted fields are left unchanged."""

    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    email: str | None = Field(default=None, max_length=320)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email address")
        return v


class UserUpdate(ProfileUpdate):
    role: Role | None = None
    is_active: bool | None = None


class UserStats(BaseModel):
    total: int
    active: int
    inactive: int
    by_role: dict[str, int]
    recent_registrations: int
