"""Append-only store of scan attempts.

Only inserts are exposed to the validation path. Reads are filtered and
paginated newest-first. ``purge_before`` exists solely for the retention
policy run by the lifecycle reaper.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from compound_access.models.access_token import AccessToken
from compound_access.models.scan_attempt import ScanAttempt

MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class ScanHistoryFilter:
    compound_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    token_owner_id: str | None = None
    scanner_user_id: str | None = None
    outcome: str | None = None


@dataclass(frozen=True)
class ScanHistoryPage:
    items: list[ScanAttempt]
    page: int
    page_size: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0


def record_attempt(
    db: Session,
    *,
    token_id: str | None,
    scanner_user_id: str,
    compound_id: str,
    outcome: str,
    denial_reason: str | None = None,
    location_tag: str | None = None,
    scanned_at: datetime | None = None,
    ip_address: str = "",
    user_agent: str = "",
) -> ScanAttempt:
    attempt = ScanAttempt(
        token_id=token_id,
        scanner_user_id=scanner_user_id,
        compound_id=compound_id,
        outcome=outcome,
        denial_reason=denial_reason,
        location_tag=location_tag,
        ip_address=ip_address,
        user_agent=user_agent[:255],
    )
    if scanned_at is not None:
        attempt.scanned_at = scanned_at
    db.add(attempt)
    db.commit()
    return attempt


def _apply_filter(q, flt: ScanHistoryFilter):
    if flt.compound_id:
        q = q.where(ScanAttempt.compound_id == flt.compound_id)
    if flt.date_from:
        q = q.where(ScanAttempt.scanned_at >= flt.date_from)
    if flt.date_to:
        q = q.where(ScanAttempt.scanned_at <= flt.date_to)
    if flt.scanner_user_id:
        q = q.where(ScanAttempt.scanner_user_id == flt.scanner_user_id)
    if flt.outcome:
        q = q.where(ScanAttempt.outcome == flt.outcome)
    if flt.token_owner_id:
        q = q.join(AccessToken, AccessToken.id == ScanAttempt.token_id).where(AccessToken.owner_user_id == flt.token_owner_id)
    return q


def list_scan_history(db: Session, flt: ScanHistoryFilter, *, page: int = 1, page_size: int = 50) -> ScanHistoryPage:
    page = max(1, page)
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    total = db.execute(_apply_filter(select(func.count(ScanAttempt.id)), flt)).scalar_one()

    q = _apply_filter(select(ScanAttempt), flt)
    q = q.order_by(ScanAttempt.scanned_at.desc(), ScanAttempt.id.desc()).offset((page - 1) * page_size).limit(page_size)
    items = list(db.execute(q).scalars().all())

    return ScanHistoryPage(items=items, page=page, page_size=page_size, total=total)


def purge_before(db: Session, cutoff: datetime) -> int:
    result = db.execute(delete(ScanAttempt).where(ScanAttempt.scanned_at < cutoff))
    db.commit()
    return result.rowcount or 0
