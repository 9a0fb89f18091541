"""
Credential store with transactional access to users, OTP records, refresh
tokens and anonymous sessions.

Callers hand ``transaction`` a coroutine function; it receives a scope
whose repositories all share one session and one database transaction.
The transaction commits when the function returns and rolls back on any
exception (task cancellation included).  Transient failures re-run the
whole function with exponential backoff; everything else propagates.

Each service types its callback against the narrow scope Protocol it
needs, not against ``StoreScope`` itself.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.core.exceptions import ServiceUnavailable
from authcore.db.errors import StoreConflict
from authcore.db.repositories import (
    AnonymousSessionRepository,
    OtpRepository,
    RefreshTokenRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
# SQLite reports writer contention only through the message
_LOCKED_MESSAGE = "database is locked"


# ── Scopes ──────────────────────────────────────────────────────────
class RefreshScope(Protocol):
    users: UserRepository
    refresh_tokens: RefreshTokenRepository


class OtpScope(Protocol):
    users: UserRepository
    otps: OtpRepository
    refresh_tokens: RefreshTokenRepository


class SessionScope(Protocol):
    anonymous_sessions: AnonymousSessionRepository


class IdentityScope(Protocol):
    users: UserRepository
    anonymous_sessions: AnonymousSessionRepository


class AccountScope(Protocol):
    users: UserRepository
    refresh_tokens: RefreshTokenRepository


class CleanupScope(Protocol):
    users: UserRepository
    otps: OtpRepository
    refresh_tokens: RefreshTokenRepository
    anonymous_sessions: AnonymousSessionRepository


class StoreScope:
    def __init__(self, session: AsyncSession) -> None:
        self.users = UserRepository(session)
        self.otps = OtpRepository(session)
        self.refresh_tokens = RefreshTokenRepository(session)
        self.anonymous_sessions = AnonymousSessionRepository(session)


# ── Store ───────────────────────────────────────────────────────────
def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, StoreConflict):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        return isinstance(exc, OperationalError) and _LOCKED_MESSAGE in str(orig).lower()
    return False


class CredentialStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_attempts: int = 3,
        base_delay: float = 0.1,
    ) -> None:
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._base_delay = base_delay

    async def transaction(self, fn: Callable[[StoreScope], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        return await fn(StoreScope(session))
            except Exception as exc:
                if not is_transient(exc):
                    raise
                if attempt >= self._max_attempts:
                    logger.error(
                        "Transaction failed after %d attempts: %s", attempt, exc, exc_info=True
                    )
                    raise ServiceUnavailable() from exc
                delay = self._base_delay * (2**attempt)
                logger.warning(
                    "Transient store failure, retrying in %.3fs (%d/%d): %s",
                    delay,
                    attempt,
                    self._max_attempts,
                    exc,
                )
                await asyncio.sleep(delay)

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.error("Database ping failed: %s", exc)
            return False
        return True
