"""
Wires the auth services from one ``Settings`` instance and one session
factory.  Built once per application.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.core.config import Settings
from authcore.core.events import EventSink, LoggingEventSink
from authcore.core.security import TokenCodec
from authcore.core.timeutils import Clock, utcnow
from authcore.db.store import CredentialStore
from authcore.services.identity import IdentityResolver
from authcore.services.maintenance import CleanupService
from authcore.services.otp import OtpIssuer, OtpVerifier
from authcore.services.sessions import SessionManager
from authcore.services.sms import SmsSender, build_sms_sender
from authcore.services.tokens import RefreshRotationManager, TokenIssuer
from authcore.services.users import UserAccountService


@dataclass
class AuthServices:
    store: CredentialStore
    codec: TokenCodec
    otp_issuer: OtpIssuer
    otp_verifier: OtpVerifier
    refresh_manager: RefreshRotationManager
    session_manager: SessionManager
    identity: IdentityResolver
    accounts: UserAccountService
    cleanup: CleanupService


def build_auth_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    sms: SmsSender | None = None,
    events: EventSink | None = None,
    clock: Clock = utcnow,
) -> AuthServices:
    store = CredentialStore(
        session_factory,
        max_attempts=settings.DB_TRANSACTION_MAX_ATTEMPTS,
        base_delay=settings.DB_RETRY_BASE_DELAY_MS / 1000,
    )
    # Token timestamps always follow the wall clock; jose checks ``exp`` against it.
    codec = TokenCodec(algorithm=settings.JWT_ALGORITHM)
    events = events or LoggingEventSink()
    sms = sms or build_sms_sender(settings)
    issuer = TokenIssuer(codec, settings)

    return AuthServices(
        store=store,
        codec=codec,
        otp_issuer=OtpIssuer(store, settings, sms, events, clock),
        otp_verifier=OtpVerifier(store, issuer, settings, events, clock),
        refresh_manager=RefreshRotationManager(store, codec, issuer, settings, events, clock),
        session_manager=SessionManager(store, codec, settings, clock),
        identity=IdentityResolver(store, codec, settings, clock),
        accounts=UserAccountService(store, events, clock),
        cleanup=CleanupService(store, settings, events, clock),
    )
