"""Scan-time decision pipeline.

A presented code goes through lookup, compound match, state checks, the
owner entitlement join and finally a conditional grant. The first failing
check decides the denial reason. Whatever the decision, exactly one
ScanAttempt row is appended afterwards.

The grant is a single compare-and-swap UPDATE: it only applies while the
token is still active, in its window and under its usage cap, and it
deactivates single-use tokens in the same statement. Concurrent scans of the
same single-use code therefore produce one grant; the others see zero
affected rows and are denied from the token's fresh state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from compound_access.core.actor import ActorContext
from compound_access.core.config import get_settings
from compound_access.core.errors import AccessError, EntitlementDenied, NotFound, ScopeViolation, StateViolation, TransientInfra
from compound_access.core.logging import get_logger, get_ops_logger
from compound_access.core.timeutil import as_utc, utcnow
from compound_access.models.access_token import AccessToken
from compound_access.models.compound import Compound
from compound_access.models.enums import DenialReason, ScanOutcomeKind, TokenCategory
from compound_access.models.unit import Unit, UnitUser
from compound_access.models.user import User
from compound_access.services import entitlement_resolver, scan_ledger
from compound_access.services.notification_dispatcher import NotificationDispatcher
from compound_access.services.token_minter import hash_secret

logger = get_logger(__name__)
ops_logger = get_ops_logger()

# Error kind and display message per denial reason. Denials are returned, not raised.
DENIAL_ERRORS: dict[DenialReason, tuple[type[AccessError], str]] = {
    DenialReason.NOT_FOUND: (NotFound, "QR code not recognised"),
    DenialReason.CROSS_COMPOUND: (ScopeViolation, "QR code is not valid for this compound"),
    DenialReason.INACTIVE: (StateViolation, "QR code is no longer active"),
    DenialReason.NOT_YET_VALID: (StateViolation, "QR code is not valid yet"),
    DenialReason.EXPIRED: (StateViolation, "QR code has expired"),
    DenialReason.MAX_USES_EXCEEDED: (StateViolation, "QR code has reached its usage limit"),
    DenialReason.PAYMENT_REQUIRED: (EntitlementDenied, "Payment required for access"),
}


@dataclass
class ScanOutcome:
    outcome: str
    denial_reason: str | None = None
    profile: dict[str, Any] | None = None
    payment: dict[str, Any] | None = None
    token_id: str | None = field(default=None, repr=False)
    scan_attempt_id: str | None = None

    @property
    def granted(self) -> bool:
        return self.outcome == ScanOutcomeKind.GRANTED.value

    def as_error(self) -> AccessError | None:
        if self.denial_reason is None:
            return None
        reason = DenialReason(self.denial_reason)
        error_cls, message = DENIAL_ERRORS[reason]
        return error_cls(message, details={"denial_reason": reason.value})

    @classmethod
    def deny(cls, reason: DenialReason, token_id: str | None = None, payment: dict[str, Any] | None = None) -> "ScanOutcome":
        return cls(outcome=ScanOutcomeKind.DENIED.value, denial_reason=reason.value, token_id=token_id, payment=payment)


def _state_denial(token: AccessToken, now: datetime) -> DenialReason | None:
    if not token.active:
        return DenialReason.INACTIVE
    if now < as_utc(token.valid_from):
        return DenialReason.NOT_YET_VALID
    if now > as_utc(token.valid_to):
        return DenialReason.EXPIRED
    if token.max_uses is not None and token.current_uses >= token.max_uses:
        return DenialReason.MAX_USES_EXCEEDED
    return None


def _claim_use(db: Session, token_id: str, now: datetime) -> bool:
    """Increment the use count if the token is still grantable. True if this call won."""
    settings = get_settings()

    deactivate = AccessToken.single_use == True
    if settings.deactivate_on_max_uses:
        deactivate = or_(
            deactivate,
            and_(AccessToken.max_uses.is_not(None), AccessToken.current_uses + 1 >= AccessToken.max_uses),
        )

    stmt = (
        update(AccessToken)
        .where(
            AccessToken.id == token_id,
            AccessToken.active == True,
            or_(AccessToken.max_uses.is_(None), AccessToken.current_uses < AccessToken.max_uses),
            AccessToken.valid_from <= now,
            AccessToken.valid_to >= now,
        )
        .values(
            current_uses=AccessToken.current_uses + 1,
            active=case((deactivate, False), else_=AccessToken.active),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def _build_profile(db: Session, token: AccessToken) -> dict[str, Any]:
    unit = db.get(Unit, token.unit_id) if token.unit_id else None
    holder = db.get(User, token.owner_user_id) if token.owner_user_id else None
    compound = db.get(Compound, token.compound_id)

    profile: dict[str, Any] = {
        "access_type": entitlement_resolver.access_label(token.category, token.facility_subtype),
        "category": token.category,
        "unit_number": unit.unit_number if unit else None,
        "compound_name": compound.name if compound else None,
    }

    if token.category == TokenCategory.VISITOR.value:
        profile.update(
            visitor_name=token.visitor_name,
            visitor_phone=token.visitor_phone,
            vehicle_plate=token.vehicle_plate,
            person_count=token.person_count or 1,
            host_name=holder.name if holder else None,
        )
        return profile

    relationship = None
    if holder is not None and token.unit_id:
        relationship = db.execute(
            select(UnitUser.relationship_kind).where(UnitUser.unit_id == token.unit_id, UnitUser.user_id == holder.id)
        ).scalar_one_or_none()

    profile.update(
        holder_name=holder.name if holder else None,
        profile_picture_url=holder.profile_picture_url if holder else None,
        relationship=relationship,
        facility_subtype=token.facility_subtype,
    )
    return profile


def _decide(db: Session, presented_code: str, scanner: ActorContext, now: datetime) -> tuple[ScanOutcome, AccessToken | None]:
    code = (presented_code or "").strip()
    token = None
    if code:
        q = select(AccessToken).where(AccessToken.secret_hash == hash_secret(code)).execution_options(populate_existing=True)
        token = db.execute(q).scalar_one_or_none()

    if token is None:
        return ScanOutcome.deny(DenialReason.NOT_FOUND), None

    # Checked before any other state so a guessed code from another compound reveals nothing.
    if token.compound_id != scanner.compound_id:
        return ScanOutcome.deny(DenialReason.CROSS_COMPOUND, token.id), token

    reason = _state_denial(token, now)
    if reason is not None:
        return ScanOutcome.deny(reason, token.id), token

    if token.is_owner_token:
        if token.unit_id is None:
            return ScanOutcome.deny(DenialReason.PAYMENT_REQUIRED, token.id), token
        snapshot = entitlement_resolver.resolve(db, unit_id=token.unit_id, category=token.category, facility_subtype=token.facility_subtype)
        if not snapshot.entitled:
            return ScanOutcome.deny(DenialReason.PAYMENT_REQUIRED, token.id, payment=snapshot.payment_detail()), token

    profile = _build_profile(db, token)

    if not _claim_use(db, token.id, now):
        db.refresh(token)
        reason = _state_denial(token, now) or DenialReason.INACTIVE
        logger.info("scan_grant_lost_race", token_id=token.id, reason=reason.value)
        return ScanOutcome.deny(reason, token.id), token

    return ScanOutcome(outcome=ScanOutcomeKind.GRANTED.value, profile=profile, token_id=token.id), token


def _notify(notifier: NotificationDispatcher, token: AccessToken, outcome: ScanOutcome, location_tag: str | None) -> None:
    context = {
        "token_id": token.id,
        "category": token.category,
        "access_type": (outcome.profile or {}).get("access_type"),
        "visitor_name": token.visitor_name,
        "location_tag": location_tag,
    }
    try:
        notifier.send(token.owner_user_id, "qr_scanned", context)
    except Exception:
        ops_logger.exception("scan_notification_dispatch_failed", token_id=token.id)


def submit_scan(
    db: Session,
    *,
    presented_code: str,
    scanner: ActorContext,
    location_tag: str | None = None,
    now: datetime | None = None,
    notifier: NotificationDispatcher | None = None,
    ip_address: str = "",
    user_agent: str = "",
) -> ScanOutcome:
    now = as_utc(now) if now is not None else utcnow()

    try:
        outcome, token = _decide(db, presented_code, scanner, now)
    except SQLAlchemyError as e:
        db.rollback()
        ops_logger.error("scan_store_unavailable", scanner_user_id=scanner.user_id, error=str(e))
        raise TransientInfra() from e

    logger.info(
        "scan_decided",
        outcome=outcome.outcome,
        denial_reason=outcome.denial_reason,
        token_id=outcome.token_id,
        scanner_user_id=scanner.user_id,
        compound_id=scanner.compound_id,
        location_tag=location_tag,
    )

    try:
        attempt = scan_ledger.record_attempt(
            db,
            token_id=outcome.token_id,
            scanner_user_id=scanner.user_id,
            compound_id=scanner.compound_id,
            outcome=outcome.outcome,
            denial_reason=outcome.denial_reason,
            location_tag=location_tag,
            scanned_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        outcome.scan_attempt_id = attempt.id
    except Exception:
        db.rollback()
        ops_logger.exception("scan_ledger_write_failed", token_id=outcome.token_id, outcome=outcome.outcome, denial_reason=outcome.denial_reason)

    if outcome.granted and notifier is not None and token is not None:
        _notify(notifier, token, outcome, location_tag)

    return outcome
