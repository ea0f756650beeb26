from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from compound_access.core.actor import ActorContext
from compound_access.core.config import get_settings
from compound_access.core.deps import get_current_actor, get_db, get_notifier, rate_limited, require_roles
from compound_access.core.timeutil import utcnow
from compound_access.models.enums import SCANNER_ROLES, Role
from compound_access.schemas.access import (
    OwnerTokenOut,
    RevokeResult,
    ScanRequest,
    ScanResult,
    VisitorTokenCreate,
    VisitorTokenIssued,
    VisitorTokenOut,
)
from compound_access.services.audit_service import write_audit_log
from compound_access.services.notification_dispatcher import NotificationDispatcher
from compound_access.services.token_minter import mint_visitor_token
from compound_access.services.token_service import list_visitor_tokens, resolve_owner_tokens, revoke_token
from compound_access.services.validation_engine import submit_scan

router = APIRouter()

ISSUER_ROLES = [Role.OWNER.value, Role.MANAGEMENT.value, Role.SUPER_ADMIN.value]


@router.post("/scan", response_model=ScanResult)
def scan(
    payload: ScanRequest,
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher | None = Depends(get_notifier),
    actor: ActorContext = Depends(rate_limited("scan_rate_limiter", SCANNER_ROLES)),
):
    outcome = submit_scan(
        db,
        presented_code=payload.code,
        scanner=actor,
        location_tag=payload.location_tag,
        notifier=notifier,
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
    )
    error = outcome.as_error()
    return ScanResult(
        outcome=outcome.outcome,
        denial_reason=outcome.denial_reason,
        profile=outcome.profile,
        payment=outcome.payment,
        error=error.to_response() if error is not None else None,
    )


@router.post("/visitor-tokens", response_model=VisitorTokenIssued, status_code=201)
def issue_visitor_token(
    payload: VisitorTokenCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_roles(ISSUER_ROLES)),
):
    settings = get_settings()
    valid_from = payload.valid_from or utcnow()
    valid_to = payload.valid_to or valid_from + timedelta(hours=settings.visitor_default_hours)

    minted = mint_visitor_token(
        db,
        requester=actor,
        unit_id=payload.unit_id,
        visitor_name=payload.visitor_name,
        visitor_phone=payload.visitor_phone,
        vehicle_plate=payload.vehicle_plate,
        max_persons=payload.num_persons,
        valid_from=valid_from,
        valid_to=valid_to,
        single_use=payload.single_use,
        max_uses=payload.max_uses,
    )
    token = minted.token

    write_audit_log(
        db,
        actor_user_id=actor.user_id,
        compound_id=actor.compound_id,
        action_type="VISITOR_TOKEN_ISSUE",
        target_type="access_token",
        target_id=token.id,
        summary="Visitor pass issued",
        diff_json={"unit_id": token.unit_id, "visitor_name": token.visitor_name, "single_use": token.single_use},
        request=request,
    )

    return VisitorTokenIssued(
        opaque_code=minted.opaque_code,
        record_id=token.id,
        valid_from=token.valid_from,
        valid_to=token.valid_to,
        single_use=token.single_use,
        max_uses=token.max_uses,
    )


@router.get("/visitor-tokens", response_model=list[VisitorTokenOut])
def my_visitor_tokens(
    status: str = Query(default="all", pattern="^(all|active|expired)$"),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
):
    return list_visitor_tokens(db, actor=actor, status=status)


@router.get("/owner-tokens", response_model=list[OwnerTokenOut])
def my_owner_tokens(db: Session = Depends(get_db), actor: ActorContext = Depends(require_roles([Role.OWNER.value]))):
    return resolve_owner_tokens(db, actor=actor)


@router.post("/tokens/{token_id}/revoke", response_model=RevokeResult)
def revoke(
    token_id: str,
    request: Request,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_roles(ISSUER_ROLES)),
):
    return RevokeResult(revoked=revoke_token(db, token_id=token_id, actor=actor, request=request))
