"""
Anonymous sessions: tracked callers without an account. Owned by no user.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String

from authcore.db.base import Base


class AnonymousSession(Base):
    __tablename__ = "anonymous_sessions"

    id: str = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))  # type: ignore[assignment]
    session_id: str = Column(String(36), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    device_info: dict | None = Column(JSON, nullable=True)  # type: ignore[assignment]
    ip_address: str | None = Column(String(45), nullable=True)  # type: ignore[assignment]
    expires_at: datetime = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
    last_activity_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
