"""
Repositories: the queries each entity supports, bound to one session.

They never commit: the surrounding ``CredentialStore.transaction`` owns
the unit of work.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.security import Role
from authcore.db.errors import StoreConflict
from authcore.models.anonymous_session import AnonymousSession
from authcore.models.otp import OtpRecord, OtpStatus
from authcore.models.refresh_token import RefreshToken
from authcore.models.user import User


class UserRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> User | None:
        return await self.session.get(User, user_id)

    async def get_by_phone(self, phone: str) -> User | None:
        result = await self.session.execute(select(User).where(User.phone == phone))
        return result.scalar_one_or_none()

    async def get_or_create(self, phone: str, now: datetime) -> tuple[User, bool]:
        """Return ``(user, created)``. A racing insert surfaces as StoreConflict."""
        user = await self.get_by_phone(phone)
        if user is not None:
            return user, False

        user = User(
            phone=phone,
            role=Role.CUSTOMER.value,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise StoreConflict(f"user with phone {phone!r} was created concurrently") from exc
        return user, True

    async def record_login(self, user: User, now: datetime) -> None:
        user.last_login_at = now
        user.updated_at = now
        await self.session.flush()

    async def deactivate(self, user: User, now: datetime) -> None:
        user.is_active = False
        user.updated_at = now
        await self.session.flush()

    async def email_taken(self, email: str, exclude_id: str) -> bool:
        result = await self.session.execute(
            select(User.id).where(User.email == email, User.id != exclude_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def update(self, user: User, changes: dict[str, Any], now: datetime) -> None:
        for field, value in changes.items():
            setattr(user, field, value)
        user.updated_at = now
        await self.session.flush()

    async def inactive_since(self, before: datetime) -> list[User]:
        """Active accounts whose last login is at or before ``before``."""
        result = await self.session.execute(
            select(User)
            .where(User.is_active.is_(True), User.last_login_at <= before)
            .order_by(User.last_login_at)
        )
        return list(result.scalars().all())

    async def stats(self, registered_since: datetime) -> dict[str, Any]:
        total = await self.session.scalar(select(func.count(User.id)))
        active = await self.session.scalar(
            select(func.count(User.id)).where(User.is_active.is_(True))
        )
        recent = await self.session.scalar(
            select(func.count(User.id)).where(User.created_at >= registered_since)
        )
        by_role = await self.session.execute(
            select(User.role, func.count(User.id)).group_by(User.role)
        )
        return {
            "total": total or 0,
            "active": active or 0,
            "by_role": {role: count for role, count in by_role.all()},
            "recent_registrations": recent or 0,
        }


class OtpRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def latest_pending_since(self, phone: str, since: datetime) -> OtpRecord | None:
        result = await self.session.execute(
            select(OtpRecord)
            .where(
                OtpRecord.phone == phone,
                OtpRecord.status == OtpStatus.PENDING.value,
                OtpRecord.created_at >= since,
            )
            .order_by(OtpRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def newest_pending(self, phone: str, now: datetime) -> OtpRecord | None:
        """The only record eligible for verification, row-locked."""
        result = await self.session.execute(
            select(OtpRecord)
            .where(
                OtpRecord.phone == phone,
                OtpRecord.status == OtpStatus.PENDING.value,
                OtpRecord.expires_at >= now,
            )
            .order_by(OtpRecord.created_at.desc())
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        phone: str,
        code: str,
        now: datetime,
        expires_at: datetime,
        user_id: str | None,
        ip_address: str | None,
        user_agent: str | None,
        device_info: dict | None,
    ) -> OtpRecord:
        record = OtpRecord(
            phone=phone,
            code=code,
            status=OtpStatus.PENDING.value,
            attempt_count=0,
            created_at=now,
            expires_at=expires_at,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            device_info=device_info,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def increment_pending_attempts(self, phone: str) -> int:
        result = await self.session.execute(
            update(OtpRecord)
            .where(OtpRecord.phone == phone, OtpRecord.status == OtpStatus.PENDING.value)
            .values(attempt_count=OtpRecord.attempt_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def mark_expired(self, otp_id: str) -> None:
        await self.session.execute(
            update(OtpRecord)
            .where(OtpRecord.id == otp_id, OtpRecord.status == OtpStatus.PENDING.value)
            .values(status=OtpStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )

    async def mark_used(self, otp_id: str, now: datetime) -> bool:
        """PENDING -> USED. False if another request got there first."""
        result = await self.session.execute(
            update(OtpRecord)
            .where(OtpRecord.id == otp_id, OtpRecord.status == OtpStatus.PENDING.value)
            .values(status=OtpStatus.USED.value, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete_stale(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(OtpRecord)
            .where(
                or_(
                    OtpRecord.expires_at <= now,
                    OtpRecord.status.in_([OtpStatus.USED.value, OtpStatus.EXPIRED.value]),
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class RefreshTokenRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        user_id: str,
        token_hash: str,
        now: datetime,
        expires_at: datetime,
        device_info: dict | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> RefreshToken:
        row = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            device_info=device_info,
            ip_address=ip_address,
            user_agent=user_agent,
            is_revoked=False,
            created_at=now,
            expires_at=expires_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_by_hash(self, token_hash: str) -> RefreshToken | None:
        result = await self.session.execute(
            select(RefreshToken).where(RefreshToken.token_hash == token_hash).with_for_update()
        )
        return result.scalar_one_or_none()

    async def touch(self, row: RefreshToken, now: datetime) -> None:
        row.last_used_at = now
        await self.session.flush()

    async def revoke(self, user_id: str, token_hash: str | None = None) -> int:
        """Revoke one token of the user (by hash) or all of them."""
        stmt = update(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked.is_(False),
        )
        if token_hash is not None:
            stmt = stmt.where(RefreshToken.token_hash == token_hash)
        result = await self.session.execute(
            stmt.values(is_revoked=True).execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_stale(self, now: datetime, revoked_before: datetime) -> int:
        result = await self.session.execute(
            delete(RefreshToken)
            .where(
                or_(
                    RefreshToken.expires_at <= now,
                    and_(RefreshToken.is_revoked.is_(True), RefreshToken.created_at <= revoked_before),
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class AnonymousSessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        session_id: str,
        now: datetime,
        expires_at: datetime,
        device_info: dict | None,
        ip_address: str | None,
    ) -> AnonymousSession:
        row = AnonymousSession(
            session_id=session_id,
            device_info=device_info,
            ip_address=ip_address,
            expires_at=expires_at,
            last_activity_at=now,
            created_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_by_session_id(self, session_id: str) -> AnonymousSession | None:
        result = await self.session.execute(
            select(AnonymousSession).where(AnonymousSession.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def touch(self, row: AnonymousSession, now: datetime) -> None:
        row.last_activity_at = now
        await self.session.flush()

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(AnonymousSession)
            .where(AnonymousSession.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
