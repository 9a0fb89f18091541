"""
Token codec (JWT via python-jose), token hashing and random material.

Each token class is signed with its own secret; ``verify`` also checks
the ``type`` claim so a refresh token can't stand in for an access token.
"""

from __future__ import annotations

import hashlib
import secrets
import uuid
from datetime import timedelta
from enum import Enum

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, Field, ValidationError

from authcore.core.exceptions import (
    InvalidSignature,
    MalformedToken,
    TokenExpired,
    TokenTypeMismatch,
)
from authcore.core.timeutils import Clock, utcnow


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenPayload(BaseModel):
    """Claims we put in a token; ``iat``/``exp`` are added by the codec."""

    sub: str
    type: TokenType
    phone: str | None = None
    role: Role | None = None
    session_id: str | None = Field(default=None, alias="sessionId")
    jti: str | None = None

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def is_anonymous(self) -> bool:
        return self.session_id is not None

    def to_claims(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TokenCodec:
    def __init__(self, algorithm: str = "HS256", clock: Clock = utcnow) -> None:
        self._algorithm = algorithm
        self._clock = clock

    def sign(self, payload: TokenPayload, secret: str, ttl: timedelta) -> str:
        issued_at = self._clock()
        claims = payload.to_claims()
        claims["iat"] = int(issued_at.timestamp())
        claims["exp"] = int((issued_at + ttl).timestamp())
        return jwt.encode(claims, secret, algorithm=self._algorithm)

    def verify(
        self,
        token: str,
        secret: str,
        expected_type: TokenType | None = None,
    ) -> TokenPayload:
        self.peek(token)
        try:
            claims = jwt.decode(token, secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise InvalidSignature() from exc

        payload = self._to_payload(claims)
        if expected_type is not None and payload.type != expected_type:
            raise TokenTypeMismatch(
                f"Expected a {expected_type.value} token, got {payload.type.value}"
            )
        return payload

    def peek(self, token: str) -> TokenPayload:
        """Unverified claims. Only for routing a token to its secret."""
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken() from exc
        return self._to_payload(claims)

    @staticmethod
    def _to_payload(claims: dict) -> TokenPayload:
        try:
            return TokenPayload.model_validate(claims)
        except ValidationError as exc:
            raise MalformedToken() from exc


# ── Random material & hashing ───────────────────────────────────────
def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_otp_code(length: int) -> str:
    """Uniform over [10**(length-1), 10**length - 1]."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(10**length - low))


def generate_token_secret() -> str:
    return secrets.token_hex(32)


def new_session_id() -> str:
    return str(uuid.uuid4())
