from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from compound_access.db.base import Base
from compound_access.models._mixins import TimestampMixin
from compound_access.models.enums import PaymentStatus


class Season(Base, TimestampMixin):
    __tablename__ = "seasons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    compound_id: Mapped[str] = mapped_column(String(36), ForeignKey("compounds.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Service(Base, TimestampMixin):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    compound_id: Mapped[str] = mapped_column(String(36), ForeignKey("compounds.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("unit_id", "service_id", "season_id", name="uq_payments_unit_service_season"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id: Mapped[str] = mapped_column(String(36), ForeignKey("units.id"), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String(36), ForeignKey("services.id"), nullable=False, index=True)
    season_id: Mapped[str] = mapped_column(String(36), ForeignKey("seasons.id"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PaymentStatus.DUE.value)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_on_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
