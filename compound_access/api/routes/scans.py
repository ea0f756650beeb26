from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from compound_access.core.actor import ActorContext
from compound_access.core.deps import get_current_actor, get_db
from compound_access.core.timeutil import as_utc
from compound_access.models.enums import Role
from compound_access.schemas.access import ScanAttemptOut, ScanHistoryOut
from compound_access.services.scan_ledger import ScanHistoryFilter, list_scan_history

router = APIRouter()


@router.get("", response_model=ScanHistoryOut)
def scan_history(
    from_: datetime | None = Query(default=None, alias="from"),
    to: datetime | None = None,
    token_owner_id: str | None = None,
    scanner_user_id: str | None = None,
    outcome: str | None = Query(default=None, pattern="^(granted|denied)$"),
    compound_id: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
):
    # Non-admins only ever see their own slice of their own compound.
    if not actor.is_super_admin or compound_id is None:
        compound_id = actor.compound_id
    if actor.role == Role.OWNER.value:
        token_owner_id = actor.user_id
    elif not actor.is_admin:
        scanner_user_id = actor.user_id

    flt = ScanHistoryFilter(
        compound_id=compound_id,
        date_from=as_utc(from_) if from_ else None,
        date_to=as_utc(to) if to else None,
        token_owner_id=token_owner_id,
        scanner_user_id=scanner_user_id,
        outcome=outcome,
    )
    result = list_scan_history(db, flt, page=page, page_size=page_size)
    return ScanHistoryOut(
        items=[ScanAttemptOut.model_validate(a) for a in result.items],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
        pages=result.pages,
    )
