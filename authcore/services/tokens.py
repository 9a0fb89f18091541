"""
Token issuing, refresh and revocation.

Refresh tokens are JWTs carrying a random ``jti``; the database keeps
only their SHA-256, so a row can be looked up from a presented token but
a leaked table yields nothing usable.

A successful refresh mints a new pair and leaves the presented refresh
token valid.  Several refresh tokens per user can be live at once (one
per device); they end on logout, deactivation or expiry.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from authcore.core.config import Settings
from authcore.core.events import EventSink, UserLoggedOut
from authcore.core.exceptions import RevokedOrExpired, UserDeactivated
from authcore.core.security import (
    Role,
    TokenCodec,
    TokenPayload,
    TokenType,
    generate_token_secret,
    hash_token,
)
from authcore.core.timeutils import Clock, ensure_utc, utcnow
from authcore.db.store import CredentialStore, RefreshScope
from authcore.models.user import User
from authcore.schemas.token import AuthResponse
from authcore.schemas.user import UserSummary

logger = logging.getLogger(__name__)


async def revoke_all(scope: RefreshScope, user_id: str) -> int:
    """Revoke every live refresh token of the user inside the caller's transaction."""
    return await scope.refresh_tokens.revoke(user_id)


class TokenIssuer:
    """Signs access tokens and mints persisted refresh tokens."""

    def __init__(self, codec: TokenCodec, settings: Settings) -> None:
        self._codec = codec
        self._settings = settings
        self.access_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    def access_token(self, user: User) -> str:
        payload = TokenPayload(
            sub=user.id,
            type=TokenType.ACCESS,
            phone=user.phone,
            role=Role(user.role),
        )
        return self._codec.sign(payload, self._settings.JWT_ACCESS_SECRET, self.access_ttl)

    async def mint_refresh_token(
        self,
        scope: RefreshScope,
        user: User,
        *,
        now: datetime,
        device_info: dict | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> str:
        payload = TokenPayload(sub=user.id, type=TokenType.REFRESH, jti=generate_token_secret())
        token = self._codec.sign(payload, self._settings.JWT_REFRESH_SECRET, self.refresh_ttl)
        await scope.refresh_tokens.create(
            user_id=user.id,
            token_hash=hash_token(token),
            now=now,
            expires_at=now + self.refresh_ttl,
            device_info=device_info,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return token

    def auth_response(self, user: User, refresh_token: str) -> AuthResponse:
        return AuthResponse(
            access_token=self.access_token(user),
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
            user=UserSummary.model_validate(user),
        )


class RefreshRotationManager:
    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        issuer: TokenIssuer,
        settings: Settings,
        events: EventSink,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._codec = codec
        self._issuer = issuer
        self._settings = settings
        self._events = events
        self._clock = clock

    async def refresh(
        self,
        refresh_token: str,
        *,
        ip_address: str | None,
        user_agent: str | None,
    ) -> AuthResponse:
        payload = self._codec.verify(
            refresh_token, self._settings.JWT_REFRESH_SECRET, expected_type=TokenType.REFRESH
        )
        token_hash = hash_token(refresh_token)
        now = self._clock()

        async def _rotate(scope: RefreshScope) -> tuple[User, str]:
            row = await scope.refresh_tokens.get_by_hash(token_hash)
            if (
                row is None
                or row.is_revoked
                or ensure_utc(row.expires_at) < now
                or row.user_id != payload.sub
            ):
                raise RevokedOrExpired()
            user = await scope.users.get(row.user_id)
            if user is None or not user.is_active:
                raise UserDeactivated()
            await scope.refresh_tokens.touch(row, now)
            new_token = await self._issuer.mint_refresh_token(
                scope,
                user,
                now=now,
                device_info=row.device_info,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return user, new_token

        user, new_token = await self._store.transaction(_rotate)
        logger.info("Tokens refreshed for user %s", user.id)
        return self._issuer.auth_response(user, new_token)

    async def logout(self, user_id: str, refresh_token: str | None = None) -> int:
        """Revoke one of the user's refresh tokens, or all of them."""
        token_hash = hash_token(refresh_token) if refresh_token else None

        async def _revoke(scope: RefreshScope) -> int:
            if token_hash is None:
                return await revoke_all(scope, user_id)
            return await scope.refresh_tokens.revoke(user_id, token_hash)

        revoked = await self._store.transaction(_revoke)
        logger.info(
            "User %s logged out (%s, %d token(s) revoked)",
            user_id,
            "single device" if token_hash else "all devices",
            revoked,
        )
        self._events.publish(UserLoggedOut(user_id=user_id))
        return revoked
