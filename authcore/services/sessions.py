"""
Anonymous sessions: a tracked caller without an account.

No refresh token is issued; when the session token lapses the client
creates a new session.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from authcore.core.config import Settings
from authcore.core.security import TokenCodec, TokenPayload, TokenType, new_session_id
from authcore.core.timeutils import Clock, utcnow
from authcore.db.store import CredentialStore, SessionScope
from authcore.models.anonymous_session import AnonymousSession
from authcore.schemas.auth import AnonymousSessionResponse

logger = logging.getLogger(__name__)


class SessionManager:
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
        self._session_ttl = timedelta(days=settings.ANONYMOUS_SESSION_TTL_DAYS)
        self._token_ttl = timedelta(days=settings.ANONYMOUS_TOKEN_EXPIRE_DAYS)

    async def create_anonymous_session(
        self,
        *,
        ip_address: str | None,
        device_info: dict | None = None,
    ) -> AnonymousSessionResponse:
        now = self._clock()

        async def _create(scope: SessionScope) -> AnonymousSession:
            return await scope.anonymous_sessions.create(
                session_id=new_session_id(),
                now=now,
                expires_at=now + self._session_ttl,
                device_info=device_info,
                ip_address=ip_address,
            )

        row = await self._store.transaction(_create)
        token = self._codec.sign(
            TokenPayload(sub=row.id, type=TokenType.ACCESS, session_id=row.session_id),
            self._settings.JWT_ANONYMOUS_SECRET,
            self._token_ttl,
        )
        logger.info("Anonymous session %s created", row.session_id)
        return AnonymousSessionResponse(
            session_token=token,
            session_id=row.session_id,
            expires_in=int(self._session_ttl.total_seconds()),
        )
