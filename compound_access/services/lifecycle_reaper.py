"""Periodic bulk policies run by an external scheduler.

State-changing jobs are idempotent bulk UPDATE/DELETEs; re-running finds
nothing left to do and returns zero. The notice jobs (season expiry,
payment reminders) send again on every run, so the scheduler decides their
cadence. Jobs may overlap with live scans: a token deactivated here makes an
in-flight grant's conditional update miss.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from compound_access.core.config import get_settings
from compound_access.core.logging import get_logger
from compound_access.core.timeutil import local_today, utcnow
from compound_access.models.access_token import AccessToken
from compound_access.models.billing import Payment, Season, Service
from compound_access.models.enums import PaymentStatus, Role, TokenCategory
from compound_access.models.unit import Unit, UnitUser
from compound_access.models.user import User
from compound_access.services import scan_ledger
from compound_access.services.audit_service import write_audit_log
from compound_access.services.notification_dispatcher import NotificationDispatcher, clear_device_token
from compound_access.services.push_transport import PushTransport

logger = get_logger(__name__)


@dataclass
class ReaperReport:
    tokens_expired: int = 0
    seasons_closed: int = 0
    owner_tokens_deactivated: int = 0
    ledger_rows_purged: int = 0
    payments_marked_overdue: int = 0
    payment_reminders_sent: int = 0
    season_notices_sent: int = 0
    device_tokens_removed: int = 0
    errors: list[str] = field(default_factory=list)


def expire_past_tokens(db: Session, now: datetime | None = None) -> int:
    """Deactivate every active token, visitor or owner, whose window has ended."""
    now = now or utcnow()
    result = db.execute(
        update(AccessToken)
        .where(AccessToken.active == True, AccessToken.valid_to < now)
        .values(active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("tokens_expired", count=count)
    return count


def close_ended_seasons(db: Session, today: date | None = None) -> tuple[int, int]:
    """Deactivate owner tokens of every active season whose end date has passed, then the season itself."""
    today = today or local_today()
    now = utcnow()

    seasons = db.execute(select(Season).where(Season.is_active == True, Season.end_date < today)).scalars().all()

    tokens_total = 0
    for season in seasons:
        result = db.execute(
            update(AccessToken)
            .where(
                AccessToken.season_id == season.id,
                AccessToken.category != TokenCategory.VISITOR.value,
                AccessToken.active == True,
            )
            .values(active=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        season.is_active = False
        db.commit()

        tokens = result.rowcount or 0
        tokens_total += tokens
        write_audit_log(
            db,
            actor_user_id=None,
            compound_id=season.compound_id,
            action_type="SEASON_AUTO_CLOSE",
            target_type="season",
            target_id=season.id,
            summary=f'Season "{season.name}" ended',
            diff_json={"owner_tokens_deactivated": tokens},
        )
        logger.info("season_closed", season_id=season.id, compound_id=season.compound_id, owner_tokens_deactivated=tokens)

    return len(seasons), tokens_total


def purge_scan_ledger(db: Session, now: datetime | None = None, retention_days: int | None = None) -> int:
    now = now or utcnow()
    if retention_days is None:
        retention_days = get_settings().ledger_retention_days
    cutoff = now - timedelta(days=retention_days)
    count = scan_ledger.purge_before(db, cutoff)
    if count:
        logger.info("scan_ledger_purged", count=count, cutoff=cutoff.isoformat())
    return count


def mark_overdue_payments(db: Session, today: date | None = None) -> int:
    today = today or local_today()
    result = db.execute(
        update(Payment)
        .where(Payment.status == PaymentStatus.DUE.value, Payment.due_date.is_not(None), Payment.due_date < today)
        .values(status=PaymentStatus.OVERDUE.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("payments_marked_overdue", count=count)
    return count


def send_payment_reminders(db: Session, notifier: NotificationDispatcher, today: date | None = None) -> int:
    """Remind the primary resident of each unit about unpaid, past-due payments of the active season."""
    today = today or local_today()

    rows = db.execute(
        select(Payment, Unit.unit_number, Season.name, Service.name, UnitUser.user_id)
        .join(Unit, Unit.id == Payment.unit_id)
        .join(Season, Season.id == Payment.season_id)
        .join(Service, Service.id == Payment.service_id)
        .join(UnitUser, (UnitUser.unit_id == Unit.id) & (UnitUser.is_primary == True))
        .where(
            Payment.status.in_([PaymentStatus.DUE.value, PaymentStatus.OVERDUE.value]),
            Payment.due_date.is_not(None),
            Payment.due_date < today,
            Season.is_active == True,
        )
        .order_by(Unit.unit_number, Service.name)
    ).all()

    for payment, unit_number, season_name, service_name, user_id in rows:
        notifier.send(
            user_id,
            "payment_reminder",
            {
                "season_name": season_name,
                "service_name": service_name,
                "amount": str(payment.amount) if payment.amount is not None else None,
                "unit_number": unit_number,
                "payment_status": payment.status,
            },
        )
    if rows:
        logger.info("payment_reminders_queued", count=len(rows))
    return len(rows)


def notify_expiring_seasons(
    db: Session,
    notifier: NotificationDispatcher,
    today: date | None = None,
    notice_days: int | None = None,
) -> int:
    today = today or local_today()
    if notice_days is None:
        notice_days = get_settings().season_expiry_notice_days

    seasons = db.execute(
        select(Season).where(
            Season.is_active == True,
            Season.end_date > today,
            Season.end_date <= today + timedelta(days=notice_days),
        )
    ).scalars().all()

    sent = 0
    for season in seasons:
        days_left = (season.end_date - today).days
        managers = db.execute(
            select(User.id).where(User.compound_id == season.compound_id, User.role == Role.MANAGEMENT.value, User.is_active == True)
        ).scalars().all()
        logger.info("season_expiring", season_id=season.id, days_until_expiry=days_left, recipients=len(managers))
        for manager_id in managers:
            notifier.send(
                manager_id,
                "season_expiring",
                {"season_id": season.id, "season_name": season.name, "days_until_expiry": days_left},
            )
            sent += 1
    return sent


def remove_invalid_device_tokens(db: Session, transport: PushTransport) -> int:
    """Clear stored device tokens the push provider no longer accepts."""
    users = db.execute(select(User.id, User.device_token).where(User.device_token.is_not(None))).all()

    removed = 0
    for user_id, device_token in users:
        if transport.is_deliverable(device_token):
            continue
        if clear_device_token(db, user_id, device_token):
            removed += 1
    if removed:
        logger.info("device_tokens_removed", count=removed)
    return removed


JOBS = (
    "token-expiry",
    "season-close",
    "ledger-purge",
    "payments-overdue",
    "payment-reminders",
    "season-notice",
    "device-token-cleanup",
)


def run_all(db: Session, *, now: datetime | None = None, notifier: NotificationDispatcher | None = None, jobs: tuple[str, ...] = JOBS) -> ReaperReport:
    now = now or utcnow()
    today = local_today(now)
    report = ReaperReport()

    def _run(name: str, fn) -> None:
        if name not in jobs:
            return
        try:
            fn()
        except Exception as e:
            db.rollback()
            logger.exception("reaper_job_failed", job=name)
            report.errors.append(f"{name}: {e}")

    def _expire() -> None:
        report.tokens_expired = expire_past_tokens(db, now)

    def _seasons() -> None:
        report.seasons_closed, report.owner_tokens_deactivated = close_ended_seasons(db, today)

    def _purge() -> None:
        report.ledger_rows_purged = purge_scan_ledger(db, now)

    def _overdue() -> None:
        report.payments_marked_overdue = mark_overdue_payments(db, today)

    def _reminders() -> None:
        if notifier is not None:
            report.payment_reminders_sent = send_payment_reminders(db, notifier, today)

    def _notice() -> None:
        if notifier is not None:
            report.season_notices_sent = notify_expiring_seasons(db, notifier, today)

    def _device_tokens() -> None:
        if notifier is not None:
            report.device_tokens_removed = remove_invalid_device_tokens(db, notifier.transport)

    _run("token-expiry", _expire)
    _run("season-close", _seasons)
    _run("ledger-purge", _purge)
    _run("payments-overdue", _overdue)
    _run("payment-reminders", _reminders)
    _run("season-notice", _notice)
    _run("device-token-cleanup", _device_tokens)
    return report
