from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from fastapi import Request
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from compound_access.core.actor import ActorContext
from compound_access.core.errors import NotFound, ScopeViolation
from compound_access.core.logging import get_logger
from compound_access.core.timeutil import utcnow
from compound_access.models.access_token import AccessToken
from compound_access.models.enums import ScanOutcomeKind, TokenCategory
from compound_access.models.scan_attempt import ScanAttempt
from compound_access.models.unit import Unit, UnitUser
from compound_access.services import entitlement_resolver
from compound_access.services.audit_service import write_audit_log
from compound_access.services.token_minter import SeasonWindow, mint_or_reuse_owner_token

logger = get_logger(__name__)


@dataclass(frozen=True)
class OwnerTokenView:
    opaque_code: str
    token_id: str
    category: str
    facility_subtype: str | None
    access_type: str
    unit_id: str
    unit_number: str
    valid_from: datetime
    valid_to: datetime


def revoke_token(db: Session, *, token_id: str, actor: ActorContext, request: Request | None = None) -> bool:
    """Deactivate a token. Returns False when it was already inactive."""
    token = db.get(AccessToken, token_id)
    if token is None:
        raise NotFound("Token not found")

    is_owner = token.owner_user_id == actor.user_id and token.compound_id == actor.compound_id
    is_compound_admin = actor.is_admin and token.compound_id == actor.compound_id
    if not (is_owner or is_compound_admin or actor.is_super_admin):
        raise ScopeViolation("Permission denied")

    now = utcnow()
    result = db.execute(
        update(AccessToken)
        .where(AccessToken.id == token_id, AccessToken.active == True)
        .values(active=False, revoked_at=now, revoked_by_user_id=actor.user_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    revoked = result.rowcount == 1

    if revoked:
        write_audit_log(
            db,
            actor_user_id=actor.user_id,
            compound_id=token.compound_id,
            action_type="ACCESS_TOKEN_REVOKE",
            target_type="access_token",
            target_id=token.id,
            summary=f"Revoked {token.category} token",
            diff_json={"category": token.category, "owner_user_id": token.owner_user_id},
            request=request,
        )
        logger.info("token_revoked", token_id=token.id, actor_user_id=actor.user_id)
    return revoked


def resolve_owner_tokens(db: Session, *, actor: ActorContext) -> list[OwnerTokenView]:
    """Mint or reuse a token for every scope the actor's units are currently paid for."""
    season = entitlement_resolver.active_season(db, actor.compound_id)
    if season is None:
        return []
    window = SeasonWindow.from_season(season)

    units = db.execute(
        select(Unit)
        .join(UnitUser, UnitUser.unit_id == Unit.id)
        .where(UnitUser.user_id == actor.user_id, Unit.compound_id == actor.compound_id)
        .order_by(Unit.unit_number)
    ).scalars().all()

    views: list[OwnerTokenView] = []
    for unit in units:
        for category, subtype in entitlement_resolver.owner_catalogue():
            snapshot = entitlement_resolver.resolve(db, unit_id=unit.id, category=category, facility_subtype=subtype)
            if not snapshot.entitled:
                continue
            minted = mint_or_reuse_owner_token(
                db,
                user_id=actor.user_id,
                unit_id=unit.id,
                compound_id=actor.compound_id,
                category=category,
                facility_subtype=subtype,
                season_window=window,
            )
            views.append(
                OwnerTokenView(
                    opaque_code=minted.opaque_code,
                    token_id=minted.token.id,
                    category=category,
                    facility_subtype=subtype,
                    access_type=entitlement_resolver.access_label(category, subtype),
                    unit_id=unit.id,
                    unit_number=unit.unit_number,
                    valid_from=minted.token.valid_from,
                    valid_to=minted.token.valid_to,
                )
            )
    return views


def list_visitor_tokens(db: Session, *, actor: ActorContext, status: str = "all") -> list[dict]:
    now = utcnow()

    scan_count = (
        select(func.count(ScanAttempt.id))
        .where(ScanAttempt.token_id == AccessToken.id, ScanAttempt.outcome == ScanOutcomeKind.GRANTED.value)
        .correlate(AccessToken)
        .scalar_subquery()
    )
    last_scanned = (
        select(func.max(ScanAttempt.scanned_at))
        .where(ScanAttempt.token_id == AccessToken.id, ScanAttempt.outcome == ScanOutcomeKind.GRANTED.value)
        .correlate(AccessToken)
        .scalar_subquery()
    )

    q = (
        select(AccessToken, Unit.unit_number, scan_count, last_scanned)
        .outerjoin(Unit, Unit.id == AccessToken.unit_id)
        .where(AccessToken.owner_user_id == actor.user_id, AccessToken.category == TokenCategory.VISITOR.value)
    )
    if status == "active":
        q = q.where(AccessToken.active == True, AccessToken.valid_to > now)
    elif status == "expired":
        q = q.where(or_(AccessToken.active == False, AccessToken.valid_to <= now))
    q = q.order_by(AccessToken.created_at.desc())

    rows = db.execute(q).all()
    return [
        {
            "id": t.id,
            "visitor_name": t.visitor_name,
            "visitor_phone": t.visitor_phone,
            "vehicle_plate": t.vehicle_plate,
            "person_count": t.person_count,
            "unit_number": unit_number,
            "valid_from": t.valid_from,
            "valid_to": t.valid_to,
            "active": t.active,
            "max_uses": t.max_uses,
            "current_uses": t.current_uses,
            "scan_count": count or 0,
            "last_scanned_at": last,
            "created_at": t.created_at,
        }
        for t, unit_number, count, last in rows
    ]
