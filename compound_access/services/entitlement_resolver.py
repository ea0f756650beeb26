"""Payment-based entitlement for owner token categories.

Entitlement is derived fresh on every call from the compound's active season
and the unit's payment for the service a category requires. Anything
missing along the way resolves to "not entitled".
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from compound_access.core.logging import get_logger
from compound_access.models.billing import Payment, Season, Service
from compound_access.models.enums import FacilitySubtype, PaymentStatus, TokenCategory
from compound_access.models.unit import Unit

logger = get_logger(__name__)

# (category, facility_subtype) -> required service name
REQUIRED_SERVICES: dict[tuple[str, str | None], str] = {
    (TokenCategory.GATE.value, None): "Annual Maintenance",
    (TokenCategory.POOL.value, None): "Pool Access",
    (TokenCategory.FACILITY.value, FacilitySubtype.KIDS_AREA.value): "Kids Area Access",
    (TokenCategory.FACILITY.value, FacilitySubtype.BEACH.value): "Beach Access",
}

ACCESS_LABELS: dict[tuple[str, str | None], str] = {
    (TokenCategory.VISITOR.value, None): "Visitor",
    (TokenCategory.GATE.value, None): "Gate Access",
    (TokenCategory.POOL.value, None): "Pool Access",
    (TokenCategory.FACILITY.value, FacilitySubtype.KIDS_AREA.value): "Kids Area Access",
    (TokenCategory.FACILITY.value, FacilitySubtype.BEACH.value): "Beach Access",
}


@dataclass(frozen=True)
class EntitlementSnapshot:
    unit_id: str
    entitled: bool
    season_id: str | None
    service_name: str | None
    payment_status: str | None = None  # paid/due/overdue, None when no record
    amount: Decimal | None = None
    due_date: date | None = None

    def payment_detail(self) -> dict:
        detail = asdict(self)
        detail.pop("entitled")
        detail["payment_status"] = self.payment_status or "missing"
        if self.amount is not None:
            detail["amount"] = str(self.amount)
        if self.due_date is not None:
            detail["due_date"] = self.due_date.isoformat()
        return detail


def _catalogue_key(category: str, facility_subtype: str | None) -> tuple[str, str | None]:
    return (category, facility_subtype if category == TokenCategory.FACILITY.value else None)


def required_service(category: str, facility_subtype: str | None) -> str | None:
    return REQUIRED_SERVICES.get(_catalogue_key(category, facility_subtype))


def access_label(category: str, facility_subtype: str | None) -> str:
    key = _catalogue_key(category, facility_subtype)
    if key in ACCESS_LABELS:
        return ACCESS_LABELS[key]
    if category == TokenCategory.FACILITY.value:
        return "Facility Access"
    return "Access"


def owner_catalogue() -> list[tuple[str, str | None]]:
    return list(REQUIRED_SERVICES.keys())


def active_season(db: Session, compound_id: str) -> Season | None:
    q = (
        select(Season)
        .where(Season.compound_id == compound_id, Season.is_active == True)
        .order_by(Season.start_date.desc())
        .limit(1)
    )
    return db.execute(q).scalar_one_or_none()


def resolve(db: Session, *, unit_id: str, category: str, facility_subtype: str | None = None) -> EntitlementSnapshot:
    service_name = required_service(category, facility_subtype)
    if service_name is None:
        return EntitlementSnapshot(unit_id=unit_id, entitled=False, season_id=None, service_name=None)

    unit = db.get(Unit, unit_id)
    if unit is None:
        return EntitlementSnapshot(unit_id=unit_id, entitled=False, season_id=None, service_name=service_name)

    season = active_season(db, unit.compound_id)
    if season is None:
        logger.info("entitlement_no_active_season", unit_id=unit_id, compound_id=unit.compound_id)
        return EntitlementSnapshot(unit_id=unit_id, entitled=False, season_id=None, service_name=service_name)

    q = (
        select(Payment)
        .join(Service, Service.id == Payment.service_id)
        .where(
            Payment.unit_id == unit_id,
            Payment.season_id == season.id,
            Service.compound_id == unit.compound_id,
            Service.name == service_name,
        )
        .limit(1)
    )
    payment = db.execute(q).scalar_one_or_none()
    if payment is None:
        return EntitlementSnapshot(unit_id=unit_id, entitled=False, season_id=season.id, service_name=service_name)

    return EntitlementSnapshot(
        unit_id=unit_id,
        entitled=payment.status == PaymentStatus.PAID.value,
        season_id=season.id,
        service_name=service_name,
        payment_status=payment.status,
        amount=payment.amount,
        due_date=payment.due_date,
    )
