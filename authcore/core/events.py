"""
Outbound observability events.

Services publish typed events synchronously to an injected sink; what
happens next (log line, queue, nothing) is the sink's business.  Delivery
is fire-and-forget: a failing subscriber never fails the request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import ClassVar, Protocol, Union

from authcore.core.logging import mask_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpRequested:
    name: ClassVar[str] = "auth.otp.requested"
    phone: str
    ip_address: str | None


@dataclass(frozen=True)
class UserRegistered:
    name: ClassVar[str] = "auth.user.registered"
    user_id: str
    phone: str


@dataclass(frozen=True)
class UserLoggedIn:
    name: ClassVar[str] = "auth.user.login"
    user_id: str
    phone: str


@dataclass(frozen=True)
class UserLoggedOut:
    name: ClassVar[str] = "auth.user.logout"
    user_id: str


@dataclass(frozen=True)
class UserDeactivated:
    name: ClassVar[str] = "user.deactivated"
    user_id: str
    deactivated_by: str


@dataclass(frozen=True)
class UserProfileUpdated:
    name: ClassVar[str] = "user.profile.updated"
    user_id: str
    changed: tuple[str, ...]


@dataclass(frozen=True)
class UserUpdated:
    name: ClassVar[str] = "user.updated"
    user_id: str
    updated_by: str
    changed: tuple[str, ...]


@dataclass(frozen=True)
class UserInactiveDetected:
    name: ClassVar[str] = "user.inactive.detected"
    user_id: str
    phone: str
    last_login_at: datetime | None


@dataclass(frozen=True)
class CleanupCompleted:
    name: ClassVar[str] = "tasks.cleanup.completed"
    target: str
    count: int


AuthEvent = Union[
    OtpRequested,
    UserRegistered,
    UserLoggedIn,
    UserLoggedOut,
    UserDeactivated,
    UserProfileUpdated,
    UserUpdated,
    UserInactiveDetected,
    CleanupCompleted,
]

EventHandler = Callable[[AuthEvent], None]


class EventSink(Protocol):
    def publish(self, event: AuthEvent) -> None: ...


class NullEventSink:
    def publish(self, event: AuthEvent) -> None:
        return None


class LoggingEventSink:
    """Default sink: one INFO line per event, phone numbers masked."""

    def __init__(self, logger_name: str = "authcore.events") -> None:
        self._logger = logging.getLogger(logger_name)

    def publish(self, event: AuthEvent) -> None:
        fields = asdict(event)
        if "phone" in fields:
            fields["phone"] = mask_phone(fields["phone"])
        self._logger.info("%s %s", event.name, fields)


class InProcessEventBus:
    """Fan-out to subscribed handlers, optionally filtered by event name."""

    def __init__(self) -> None:
        self._handlers: list[tuple[str | None, EventHandler]] = []

    def subscribe(self, handler: EventHandler, name: str | None = None) -> None:
        self._handlers.append((name, handler))

    def publish(self, event: AuthEvent) -> None:
        for name, handler in self._handlers:
            if name is not None and name != event.name:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event.name)
