"""
Deletion primitives for expired auth state, plus the inactive-account
sweep.

Whatever schedules them (cron, a worker beat, an admin command) lives
outside this package.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from authcore.core.config import Settings
from authcore.core.events import CleanupCompleted, EventSink, UserInactiveDetected
from authcore.core.timeutils import Clock, utcnow
from authcore.db.store import CleanupScope, CredentialStore
from authcore.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    otp_codes: int = 0
    refresh_tokens: int = 0
    anonymous_sessions: int = 0

    @property
    def total(self) -> int:
        return self.otp_codes + self.refresh_tokens + self.anonymous_sessions


class CleanupService:
    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        events: EventSink,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._events = events
        self._clock = clock

    async def purge_otp_codes(self) -> int:
        """Expired codes plus anything already USED or EXPIRED."""
        now = self._clock()

        async def _purge(scope: CleanupScope) -> int:
            return await scope.otps.delete_stale(now)

        return self._report("otp_codes", await self._store.transaction(_purge))

    async def purge_refresh_tokens(self) -> int:
        """Expired tokens, and revoked ones past the retention window."""
        now = self._clock()
        revoked_before = now - timedelta(days=self._settings.REVOKED_TOKEN_RETENTION_DAYS)

        async def _purge(scope: CleanupScope) -> int:
            return await scope.refresh_tokens.delete_stale(now, revoked_before)

        return self._report("refresh_tokens", await self._store.transaction(_purge))

    async def purge_anonymous_sessions(self) -> int:
        now = self._clock()

        async def _purge(scope: CleanupScope) -> int:
            return await scope.anonymous_sessions.delete_expired(now)

        return self._report("anonymous_sessions", await self._store.transaction(_purge))

    async def find_inactive_users(self) -> list[User]:
        """Active accounts with no login inside INACTIVE_USER_DAYS. Nothing is changed."""
        before = self._clock() - timedelta(days=self._settings.INACTIVE_USER_DAYS)

        async def _find(scope: CleanupScope) -> list[User]:
            return await scope.users.inactive_since(before)

        users = await self._store.transaction(_find)
        if users:
            logger.warning("Found %d inactive user(s)", len(users))
        for user in users:
            self._events.publish(
                UserInactiveDetected(
                    user_id=user.id, phone=user.phone, last_login_at=user.last_login_at
                )
            )
        return users

    async def run_all(self) -> CleanupReport:
        report = CleanupReport(
            otp_codes=await self.purge_otp_codes(),
            refresh_tokens=await self.purge_refresh_tokens(),
            anonymous_sessions=await self.purge_anonymous_sessions(),
        )
        logger.info(
            "Cleanup completed: %d OTP codes, %d refresh tokens, %d anonymous sessions deleted",
            report.otp_codes,
            report.refresh_tokens,
            report.anonymous_sessions,
        )
        return report

    def _report(self, target: str, count: int) -> int:
        if count > 0:
            logger.info("Deleted %d stale %s", count, target)
            self._events.publish(CleanupCompleted(target=target, count=count))
        return count
