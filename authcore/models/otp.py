"""
OTP records, one row per issued code.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from authcore.db.base import Base


class OtpStatus(str, Enum):
    PENDING = "PENDING"
    USED = "USED"
    EXPIRED = "EXPIRED"


class OtpRecord(Base):
    __tablename__ = "otp_codes"
    __table_args__ = (Index("ix_otp_codes_phone_status_created", "phone", "status", "created_at"),)

    id: str = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))  # type: ignore[assignment]
    phone: str = Column(String(20), nullable=False, index=True)  # type: ignore[assignment]
    code: str = Column(String(12), nullable=False)  # type: ignore[assignment]
    status: str = Column(  # type: ignore[assignment]
        String(10),
        nullable=False,
        default=OtpStatus.PENDING.value,
        server_default=OtpStatus.PENDING.value,
    )
    attempt_count: int = Column(Integer, nullable=False, default=0, server_default="0")  # type: ignore[assignment]
    expires_at: datetime = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    used_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    user_id: str | None = Column(  # type: ignore[assignment]
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    ip_address: str | None = Column(String(45), nullable=True)  # type: ignore[assignment]
    user_agent: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    device_info: dict | None = Column(JSON, nullable=True)  # type: ignore[assignment]

    user = relationship("User", back_populates="otp_codes", lazy="raise")
