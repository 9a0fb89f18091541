"""Pydantic schemas for the OTP and anonymous-session endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

# E.164: leading +, country code, up to 15 digits in total.
PHONE_PATTERN = r"^\+[1-9]\d{9,14}$"


class _PhoneRequest(BaseModel):
    phone: str = Field(pattern=PHONE_PATTERN, examples=["+79991234567"])
    device_info: dict[str, Any] | None = None

    @field_validator("phone", mode="before")
    @classmethod
    def _strip_phone(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v


class RequestOtpRequest(_PhoneRequest):
    pass


class VerifyOtpRequest(_PhoneRequest):
    code: str = Field(pattern=r"^\d{1,9}$", examples=["1234"])


class RequestOtpResponse(BaseModel):
    message: str
    resend_after: int
    code: str | None = None


class AnonymousSessionRequest(BaseModel):
    device_info: dict[str, Any] | None = None


class AnonymousSessionResponse(BaseModel):
    session_token: str
    session_id: str
    expires_in: int
