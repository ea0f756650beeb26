from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from compound_access.core.actor import ActorContext
from compound_access.core.config import get_settings
from compound_access.core.errors import InvalidWindow, ScopeConflict
from compound_access.core.logging import get_logger
from compound_access.core.timeutil import as_utc, local_day_end, local_day_start, utcnow
from compound_access.models.access_token import AccessToken
from compound_access.models.billing import Season
from compound_access.models.enums import TokenCategory
from compound_access.models.unit import Unit, UnitUser
from compound_access.services.entitlement_resolver import required_service

logger = get_logger(__name__)


@dataclass(frozen=True)
class MintedToken:
    token: AccessToken
    opaque_code: str


@dataclass(frozen=True)
class SeasonWindow:
    season_id: str
    starts_at: datetime
    ends_at: datetime

    @classmethod
    def from_season(cls, season: Season) -> "SeasonWindow":
        return cls(season_id=season.id, starts_at=local_day_start(season.start_date), ends_at=local_day_end(season.end_date))


def hash_secret(raw: str) -> str:
    settings = get_settings()
    return hashlib.sha256((settings.secret_key + "|" + raw).encode("utf-8")).hexdigest()


def generate_secret() -> str:
    # 32 random bytes -> 256 bits
    return secrets.token_urlsafe(32)


def derive_owner_secret(token_id: str) -> str:
    """Owner codes are re-presentable without being stored: HMAC of the record id."""
    settings = get_settings()
    digest = hmac.new(settings.secret_key.encode("utf-8"), f"owner-token|{token_id}".encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def owner_scope_key(user_id: str, unit_id: str, category: str, facility_subtype: str | None, season_id: str) -> str:
    return f"{user_id}:{unit_id}:{category}:{facility_subtype or '-'}:{season_id}"


def _is_assigned(db: Session, *, user_id: str, unit_id: str, compound_id: str) -> bool:
    q = (
        select(UnitUser.id)
        .join(Unit, Unit.id == UnitUser.unit_id)
        .where(UnitUser.user_id == user_id, UnitUser.unit_id == unit_id, Unit.compound_id == compound_id)
        .limit(1)
    )
    return db.execute(q).first() is not None


def mint_visitor_token(
    db: Session,
    *,
    requester: ActorContext,
    unit_id: str,
    visitor_name: str,
    valid_from: datetime,
    valid_to: datetime,
    max_persons: int = 1,
    visitor_phone: str | None = None,
    vehicle_plate: str | None = None,
    single_use: bool = True,
    max_uses: int | None = 1,
    now: datetime | None = None,
) -> MintedToken:
    settings = get_settings()
    now = now or utcnow()
    valid_from = as_utc(valid_from)
    valid_to = as_utc(valid_to)

    if valid_to <= valid_from:
        raise InvalidWindow()
    if valid_to <= now:
        raise InvalidWindow("Visitor pass window has already ended")
    if valid_to - valid_from > timedelta(days=settings.visitor_max_window_days):
        raise InvalidWindow(f"Visitor pass window cannot exceed {settings.visitor_max_window_days} days")

    unit = db.get(Unit, unit_id)
    if unit is None or unit.compound_id != requester.compound_id:
        raise ScopeConflict("Unit not found in your compound", details={"unit_id": unit_id})
    if not requester.is_admin and not _is_assigned(db, user_id=requester.user_id, unit_id=unit_id, compound_id=requester.compound_id):
        raise ScopeConflict("You are not assigned to this unit", details={"unit_id": unit_id})

    if single_use:
        max_uses = 1
    elif max_uses is not None and max_uses < 1:
        raise InvalidWindow("max_uses must be at least 1")

    secret = generate_secret()
    token = AccessToken(
        owner_user_id=requester.user_id,
        unit_id=unit_id,
        compound_id=requester.compound_id,
        category=TokenCategory.VISITOR.value,
        secret_hash=hash_secret(secret),
        valid_from=valid_from,
        valid_to=valid_to,
        max_uses=max_uses,
        current_uses=0,
        single_use=single_use,
        active=True,
        visitor_name=visitor_name,
        visitor_phone=visitor_phone,
        vehicle_plate=vehicle_plate,
        person_count=max_persons,
    )
    db.add(token)
    db.commit()

    logger.info("visitor_token_minted", token_id=token.id, unit_id=unit_id, compound_id=requester.compound_id, single_use=single_use)
    return MintedToken(token=token, opaque_code=secret)


def _live_owner_token(db: Session, scope_key: str) -> AccessToken | None:
    q = select(AccessToken).where(AccessToken.scope_key == scope_key, AccessToken.active == True).limit(1)
    return db.execute(q).scalar_one_or_none()


def mint_or_reuse_owner_token(
    db: Session,
    *,
    user_id: str,
    unit_id: str,
    compound_id: str,
    category: str,
    facility_subtype: str | None,
    season_window: SeasonWindow,
) -> MintedToken:
    if category != TokenCategory.FACILITY.value:
        facility_subtype = None
    if category == TokenCategory.VISITOR.value or required_service(category, facility_subtype) is None:
        raise ScopeConflict("Unknown entitlement scope", details={"category": category, "facility_subtype": facility_subtype})

    if not _is_assigned(db, user_id=user_id, unit_id=unit_id, compound_id=compound_id):
        raise ScopeConflict("You are not assigned to this unit", details={"unit_id": unit_id})

    scope_key = owner_scope_key(user_id, unit_id, category, facility_subtype, season_window.season_id)

    existing = _live_owner_token(db, scope_key)
    if existing is not None:
        return MintedToken(token=existing, opaque_code=derive_owner_secret(existing.id))

    token_id = str(uuid.uuid4())
    secret = derive_owner_secret(token_id)
    token = AccessToken(
        id=token_id,
        owner_user_id=user_id,
        unit_id=unit_id,
        compound_id=compound_id,
        season_id=season_window.season_id,
        category=category,
        facility_subtype=facility_subtype,
        secret_hash=hash_secret(secret),
        scope_key=scope_key,
        valid_from=season_window.starts_at,
        valid_to=season_window.ends_at,
        max_uses=None,
        current_uses=0,
        single_use=False,
        active=True,
    )
    db.add(token)
    try:
        db.commit()
    except IntegrityError:
        # Lost a concurrent mint for the same scope; hand back the winner.
        db.rollback()
        existing = _live_owner_token(db, scope_key)
        if existing is None:
            raise
        return MintedToken(token=existing, opaque_code=derive_owner_secret(existing.id))

    logger.info("owner_token_minted", token_id=token.id, unit_id=unit_id, category=category, facility_subtype=facility_subtype, season_id=season_window.season_id)
    return MintedToken(token=token, opaque_code=secret)
