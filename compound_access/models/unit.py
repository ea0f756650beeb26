from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compound_access.db.base import Base
from compound_access.models._mixins import TimestampMixin


class Unit(Base, TimestampMixin):
    __tablename__ = "units"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    compound_id: Mapped[str] = mapped_column(String(36), ForeignKey("compounds.id"), nullable=False, index=True)
    unit_number: Mapped[str] = mapped_column(String(32), nullable=False)

    assignments: Mapped[list["UnitUser"]] = relationship("UnitUser", back_populates="unit", cascade="all, delete-orphan")


class UnitUser(Base):
    __tablename__ = "unit_users"
    __table_args__ = (UniqueConstraint("unit_id", "user_id", name="uq_unit_users_unit_user"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id: Mapped[str] = mapped_column(String(36), ForeignKey("units.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    relationship_kind: Mapped[str] = mapped_column("relationship", String(16), nullable=False, default="owner")  # owner/spouse/child/tenant
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # receives billing reminders

    unit: Mapped[Unit] = relationship("Unit", back_populates="assignments")
