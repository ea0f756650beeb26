from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from compound_access.db.base import Base
from compound_access.models._mixins import TimestampMixin
from compound_access.models.enums import TokenCategory


class AccessToken(Base, TimestampMixin):
    __tablename__ = "access_tokens"
    __table_args__ = (
        CheckConstraint("valid_from <= valid_to", name="ck_access_tokens_window"),
        CheckConstraint("max_uses IS NULL OR current_uses <= max_uses", name="ck_access_tokens_uses"),
        # At most one live owner token per (user, unit, category, subtype, season)
        Index(
            "uq_access_tokens_live_scope",
            "scope_key",
            unique=True,
            sqlite_where=text("active = 1 AND scope_key IS NOT NULL"),
            postgresql_where=text("active AND scope_key IS NOT NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    owner_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    unit_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("units.id"), nullable=True, index=True)
    compound_id: Mapped[str] = mapped_column(String(36), ForeignKey("compounds.id"), nullable=False, index=True)
    season_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("seasons.id"), nullable=True, index=True)

    category: Mapped[str] = mapped_column(String(16), nullable=False)  # visitor/gate/pool/facility
    facility_subtype: Mapped[str | None] = mapped_column(String(32), nullable=True)  # kids_area/beach

    secret_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    scope_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    single_use: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # Visitor metadata
    visitor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    visitor_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    vehicle_plate: Mapped[str | None] = mapped_column(String(32), nullable=True)
    person_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)

    @property
    def is_owner_token(self) -> bool:
        return TokenCategory(self.category).is_owner
