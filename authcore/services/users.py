"""
Account administration. Users are never deleted; deactivation flips
``is_active`` and revokes every refresh token in the same transaction.

Lookups by id raise ``ResourceNotFound`` (404).  ``UserNotFound`` stays
reserved for bearer tokens whose subject has vanished.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from authcore.core.events import EventSink, UserProfileUpdated, UserUpdated
from authcore.core.events import UserDeactivated as UserDeactivatedEvent
from authcore.core.exceptions import (
    EmailTaken,
    InvalidOperation,
    PermissionDenied,
    ResourceNotFound,
)
from authcore.core.security import Role
from authcore.core.timeutils import Clock, utcnow
from authcore.db.store import AccountScope, CredentialStore
from authcore.models.user import User
from authcore.services.tokens import revoke_all

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("first_name", "last_name", "email")
RECENT_REGISTRATION_DAYS = 30


async def _load(scope: AccountScope, user_id: str) -> User:
    user = await scope.users.get(user_id)
    if user is None:
        raise ResourceNotFound()
    return user


async def _check_email(scope: AccountScope, user: User, changes: dict[str, Any]) -> None:
    email = changes.get("email")
    if email and email != user.email and await scope.users.email_taken(email, user.id):
        raise EmailTaken()


class UserAccountService:
    def __init__(self, store: CredentialStore, events: EventSink, clock: Clock = utcnow) -> None:
        self._store = store
        self._events = events
        self._clock = clock

    # ── Self service ────────────────────────────────────────────────
    async def get_profile(self, user_id: str) -> User:
        async def _get(scope: AccountScope) -> User:
            return await _load(scope, user_id)

        return await self._store.transaction(_get)

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> User:
        changes = {k: v for k, v in changes.items() if k in PROFILE_FIELDS}
        now = self._clock()

        async def _update(scope: AccountScope) -> User:
            user = await _load(scope, user_id)
            await _check_email(scope, user, changes)
            await scope.users.update(user, changes, now)
            return user

        user = await self._store.transaction(_update)
        self._events.publish(UserProfileUpdated(user_id=user_id, changed=tuple(sorted(changes))))
        return user

    # ── Staff ───────────────────────────────────────────────────────
    async def get_user(self, user_id: str, *, actor_id: str, actor_role: Role) -> User:
        if actor_role is Role.CUSTOMER and actor_id != user_id:
            raise PermissionDenied("Customers can only view their own profile")

        async def _get(scope: AccountScope) -> User:
            return await _load(scope, user_id)

        return await self._store.transaction(_get)

    async def update_user(
        self,
        user_id: str,
        changes: dict[str, Any],
        *,
        actor_id: str,
        actor_role: Role,
    ) -> User:
        """Edit profile fields, role or ``is_active``.

        Only admins change roles, and nobody changes their own role or
        deactivates themselves.  Setting ``is_active`` to false revokes
        every refresh token; setting it back to true reactivates the
        account without restoring them.
        """
        # role and is_active are non-nullable; an explicit null means "leave alone"
        changes = {
            k: v
            for k, v in changes.items()
            if k in PROFILE_FIELDS or (k in ("role", "is_active") and v is not None)
        }
        if "role" in changes:
            changes["role"] = Role(changes["role"]).value
            if actor_role is not Role.ADMIN:
                raise PermissionDenied("Only administrators can change roles")
        if changes.get("is_active") is False and user_id == actor_id:
            raise InvalidOperation("You cannot deactivate your own account")
        now = self._clock()

        async def _update(scope: AccountScope) -> tuple[User, bool]:
            user = await _load(scope, user_id)
            if user_id == actor_id and changes.get("role", user.role) != user.role:
                raise InvalidOperation("You cannot change your own role")
            await _check_email(scope, user, changes)
            deactivating = user.is_active and changes.get("is_active") is False
            await scope.users.update(user, changes, now)
            if deactivating:
                await revoke_all(scope, user.id)
            return user, deactivating

        user, deactivated = await self._store.transaction(_update)
        logger.info("User %s updated by %s: %s", user_id, actor_id, sorted(changes))
        self._events.publish(
            UserUpdated(user_id=user_id, updated_by=actor_id, changed=tuple(sorted(changes)))
        )
        if deactivated:
            self._events.publish(UserDeactivatedEvent(user_id=user_id, deactivated_by=actor_id))
        return user

    async def deactivate(self, user_id: str, *, actor_id: str) -> User:
        if user_id == actor_id:
            raise InvalidOperation("You cannot deactivate your own account")
        now = self._clock()

        async def _deactivate(scope: AccountScope) -> tuple[User, int]:
            user = await _load(scope, user_id)
            await scope.users.deactivate(user, now)
            revoked = await revoke_all(scope, user.id)
            return user, revoked

        user, revoked = await self._store.transaction(_deactivate)
        logger.info("User %s deactivated by %s (%d token(s) revoked)", user_id, actor_id, revoked)
        self._events.publish(UserDeactivatedEvent(user_id=user_id, deactivated_by=actor_id))
        return user

    async def stats(self) -> dict[str, Any]:
        since = self._clock() - timedelta(days=RECENT_REGISTRATION_DAYS)

        async def _stats(scope: AccountScope) -> dict[str, Any]:
            return await scope.users.stats(since)

        counts = await self._store.transaction(_stats)
        by_role = {role.value: 0 for role in Role}
        by_role.update(counts["by_role"])
        return {
            "total": counts["total"],
            "active": counts["active"],
            "inactive": counts["total"] - counts["active"],
            "by_role": by_role,
            "recent_registrations": counts["recent_registrations"],
        }
