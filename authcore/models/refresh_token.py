"""
Refresh tokens. Only the SHA-256 of the issued token is stored.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from authcore.db.base import Base


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id: str = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))  # type: ignore[assignment]
    user_id: str = Column(  # type: ignore[assignment]
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash: str = Column(String(64), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    device_info: dict | None = Column(JSON, nullable=True)  # type: ignore[assignment]
    ip_address: str | None = Column(String(45), nullable=True)  # type: ignore[assignment]
    user_agent: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    is_revoked: bool = Column(Boolean, nullable=False, default=False, server_default="false")  # type: ignore[assignment]
    expires_at: datetime = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    last_used_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]

    user = relationship("User", back_populates="refresh_tokens", lazy="raise")
