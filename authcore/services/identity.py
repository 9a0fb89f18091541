"""
Identity resolution: the single answer to "who is calling".

Every request re-checks the backing row: an expired anonymous session or
a deactivated user is rejected even while their token is still valid.
"""

from __future__ import annotations

from dataclasses import dataclass

from authcore.core.config import Settings
from authcore.core.exceptions import (
    SessionExpired,
    SessionNotFound,
    UserDeactivated,
    UserNotFound,
)
from authcore.core.security import Role, TokenCodec, TokenPayload, TokenType
from authcore.core.timeutils import Clock, ensure_utc, utcnow
from authcore.db.store import CredentialStore, IdentityScope


@dataclass(frozen=True)
class CallerIdentity:
    id: str
    is_anonymous: bool
    phone: str | None = None
    role: Role | None = None
    session_id: str | None = None


class IdentityResolver:
    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        settings: Settings,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._codec = codec
        self._settings = settings
        self._clock = clock

    async def authenticate(self, token: str) -> CallerIdentity:
        """Verify a bearer token with the secret of its class, then resolve it."""
        claims = self._codec.peek(token)
        secret = (
            self._settings.JWT_ANONYMOUS_SECRET
            if claims.is_anonymous
            else self._settings.JWT_ACCESS_SECRET
        )
        payload = self._codec.verify(token, secret, expected_type=TokenType.ACCESS)
        return await self.resolve(payload)

    async def resolve(self, payload: TokenPayload) -> CallerIdentity:
        now = self._clock()

        async def _resolve(scope: IdentityScope) -> CallerIdentity:
            if payload.session_id is not None:
                session = await scope.anonymous_sessions.get_by_session_id(payload.session_id)
                if session is None:
                    raise SessionNotFound()
                if ensure_utc(session.expires_at) < now:
                    raise SessionExpired()
                await scope.anonymous_sessions.touch(session, now)
                return CallerIdentity(
                    id=session.id,
                    is_anonymous=True,
                    session_id=session.session_id,
                )

            user = await scope.users.get(payload.sub)
            if user is None:
                raise UserNotFound()
            if not user.is_active:
                raise UserDeactivated()
            return CallerIdentity(
                id=user.id,
                is_anonymous=False,
                phone=user.phone,
                role=Role(user.role),
            )

        return await self._store.transaction(_resolve)
