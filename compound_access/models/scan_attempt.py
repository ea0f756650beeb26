from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from compound_access.db.base import Base


class ScanAttempt(Base):
    """One row per validation attempt. Rows are never updated."""

    __tablename__ = "scan_attempts"
    __table_args__ = (Index("ix_scan_attempts_compound_scanned_at", "compound_id", "scanned_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("access_tokens.id"), nullable=True, index=True)
    scanner_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    compound_id: Mapped[str] = mapped_column(String(36), ForeignKey("compounds.id"), nullable=False)

    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    outcome: Mapped[str] = mapped_column(String(16), nullable=False)  # granted/denied
    denial_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    location_tag: Mapped[str | None] = mapped_column(String(64), nullable=True)

    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    user_agent: Mapped[str] = mapped_column(String(255), nullable=False, default="")
