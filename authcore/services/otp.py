"""
OTP issuing and verification.

Per-phone abuse limits live here: a resend cooldown on requests and an
attempt counter on verification.  Counter increments and status changes
are committed before the corresponding error is raised, so a failed
attempt always counts.
"""

from __future__ import annotations

import enum
import hmac
import logging
import math
from dataclasses import dataclass
from datetime import timedelta

from authcore.core.config import Settings
from authcore.core.events import EventSink, OtpRequested, UserLoggedIn, UserRegistered
from authcore.core.exceptions import (
    AttemptsExceeded,
    DeliveryFailed,
    InvalidOrExpiredCode,
    Throttled,
    UserDeactivated,
)
from authcore.core.logging import mask_phone
from authcore.core.security import generate_otp_code
from authcore.core.timeutils import Clock, ensure_utc, utcnow
from authcore.db.store import CredentialStore, OtpScope
from authcore.models.user import User
from authcore.schemas.auth import RequestOtpResponse
from authcore.schemas.token import AuthResponse
from authcore.services.sms import SmsSender
from authcore.services.tokens import TokenIssuer

logger = logging.getLogger(__name__)


class OtpIssuer:
    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        sms: SmsSender,
        events: EventSink,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._sms = sms
        self._events = events
        self._clock = clock
        self._cooldown = timedelta(seconds=settings.OTP_RESEND_COOLDOWN_SECONDS)
        self._ttl = timedelta(seconds=settings.OTP_EXPIRE_SECONDS)

    async def request_otp(
        self,
        phone: str,
        *,
        ip_address: str | None,
        user_agent: str | None,
        device_info: dict | None = None,
    ) -> RequestOtpResponse:
        now = self._clock()

        async def _issue(scope: OtpScope) -> tuple[str | None, int]:
            recent = await scope.otps.latest_pending_since(phone, now - self._cooldown)
            if recent is not None:
                left = (ensure_utc(recent.created_at) + self._cooldown - now).total_seconds()
                return None, max(1, math.ceil(left))

            code = generate_otp_code(self._settings.OTP_LENGTH)
            user = await scope.users.get_by_phone(phone)
            await scope.otps.create(
                phone=phone,
                code=code,
                now=now,
                expires_at=now + self._ttl,
                user_id=user.id if user else None,
                ip_address=ip_address,
                user_agent=user_agent,
                device_info=device_info,
            )
            return code, 0

        code, seconds_left = await self._store.transaction(_issue)
        if code is None:
            logger.info("OTP request for %s throttled (%ds left)", mask_phone(phone), seconds_left)
            raise Throttled(seconds_left)

        if self._settings.OTP_TEST_MODE:
            logger.info("OTP code for %s: %s (test mode)", mask_phone(phone), code)
        else:
            await self._deliver(phone, code)

        self._events.publish(OtpRequested(phone=phone, ip_address=ip_address))

        return RequestOtpResponse(
            message="OTP code sent",
            resend_after=self._settings.OTP_RESEND_COOLDOWN_SECONDS,
            code=code if self._settings.OTP_TEST_MODE else None,
        )

    async def _deliver(self, phone: str, code: str) -> None:
        try:
            await self._sms.send(phone, f"Your verification code: {code}")
        except DeliveryFailed:
            if self._settings.SMS_FAILURE_FATAL:
                raise
            logger.warning("SMS delivery to %s failed; continuing", mask_phone(phone))


class _Rejection(enum.Enum):
    NO_MATCH = "no_match"
    EXHAUSTED = "exhausted"
    DEACTIVATED = "deactivated"


@dataclass
class _Verified:
    user: User
    created: bool
    refresh_token: str


class OtpVerifier:
    def __init__(
        self,
        store: CredentialStore,
        issuer: TokenIssuer,
        settings: Settings,
        events: EventSink,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._settings = settings
        self._events = events
        self._clock = clock

    async def verify_otp(
        self,
        phone: str,
        code: str,
        *,
        ip_address: str | None,
        user_agent: str | None,
        device_info: dict | None = None,
    ) -> AuthResponse:
        now = self._clock()
        max_attempts = self._settings.OTP_MAX_ATTEMPTS

        async def _verify(scope: OtpScope) -> _Verified | _Rejection:
            record = await scope.otps.newest_pending(phone, now)
            if record is None or not hmac.compare_digest(record.code.encode(), code.encode()):
                await scope.otps.increment_pending_attempts(phone)
                return _Rejection.NO_MATCH

            if record.attempt_count >= max_attempts:
                await scope.otps.mark_expired(record.id)
                return _Rejection.EXHAUSTED

            if not await scope.otps.mark_used(record.id, now):
                # Consumed by a concurrent verification.
                return _Rejection.NO_MATCH

            user, created = await scope.users.get_or_create(phone, now)
            if not user.is_active:
                return _Rejection.DEACTIVATED
            await scope.users.record_login(user, now)
            refresh_token = await self._issuer.mint_refresh_token(
                scope,
                user,
                now=now,
                device_info=device_info,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return _Verified(user=user, created=created, refresh_token=refresh_token)

        outcome = await self._store.transaction(_verify)
        if outcome is _Rejection.NO_MATCH:
            logger.info("OTP verification failed for %s", mask_phone(phone))
            raise InvalidOrExpiredCode()
        if outcome is _Rejection.EXHAUSTED:
            logger.warning("OTP attempts exhausted for %s", mask_phone(phone))
            raise AttemptsExceeded()
        if outcome is _Rejection.DEACTIVATED:
            logger.warning("OTP login refused for deactivated account %s", mask_phone(phone))
            raise UserDeactivated()

        assert isinstance(outcome, _Verified)
        user = outcome.user
        response = self._issuer.auth_response(user, outcome.refresh_token)

        if outcome.created:
            self._events.publish(UserRegistered(user_id=user.id, phone=phone))
        self._events.publish(UserLoggedIn(user_id=user.id, phone=phone))
        logger.info("User %s logged in via OTP (new=%s)", user.id, outcome.created)
        return response
