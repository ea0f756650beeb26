from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Mapping

from sqlalchemy import update
from sqlalchemy.orm import Session

from compound_access.core.logging import get_logger, get_ops_logger
from compound_access.models.enums import TokenCategory
from compound_access.models.user import User
from compound_access.services.push_transport import InvalidDeviceToken, PushTransport

logger = get_logger(__name__)
ops_logger = get_ops_logger()


def render_template(template_kind: str, context: Mapping[str, Any]) -> tuple[str, str, dict[str, Any]]:
    location = context.get("location_tag")
    where = f" at {location}" if location else ""

    if template_kind == "qr_scanned":
        data = {"type": "qr_scan", "category": context.get("category"), "token_id": context.get("token_id"), "location": location}
        if context.get("category") == TokenCategory.VISITOR.value:
            name = context.get("visitor_name") or "Your visitor"
            return "Visitor arrived", f"{name} was granted access{where}.", data
        access_type = context.get("access_type") or "access"
        return "QR code scanned", f"Your {access_type} QR code was used{where}.", data

    if template_kind == "season_expiring":
        days = context.get("days_until_expiry")
        name = context.get("season_name", "")
        data = {"type": "season_expiry", "season_id": context.get("season_id"), "days_until_expiry": days}
        return "Season Expiring Soon", f'Season "{name}" expires in {days} days. Please configure the new season.', data

    if template_kind == "payment_reminder":
        season = context.get("season_name", "")
        service = context.get("service_name") or "your subscription"
        amount = context.get("amount")
        what = f"Payment of {amount} for {service}" if amount is not None else f"Payment for {service}"
        data = {
            "type": "payment_reminder",
            "season_name": season,
            "service_name": context.get("service_name"),
            "due_amount": amount,
            "unit_number": context.get("unit_number"),
        }
        return "Payment Reminder", f"{what} ({season}) is due. Please complete your payment to maintain facility access.", data

    raise ValueError(f"Unknown notification template: {template_kind}")


def clear_device_token(db: Session, user_id: str, device_token: str) -> bool:
    """Forget a rejected device token unless the user has registered a new one meanwhile."""
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.device_token == device_token)
        .values(device_token=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


class NotificationDispatcher:
    """Fire-and-forget push notices.

    ``send`` returns immediately. Delivery, including the device token lookup,
    runs on a worker thread with its own session; every failure there is
    logged and dropped.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        transport: PushTransport,
        max_workers: int = 4,
        executor: ThreadPoolExecutor | None = None,
    ):
        self._session_factory = session_factory
        self._transport = transport
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    @property
    def transport(self) -> PushTransport:
        return self._transport

    def send(self, owner_id: str | None, template_kind: str, context: Mapping[str, Any]) -> Future | None:
        if not owner_id:
            return None
        try:
            return self._executor.submit(self._deliver, owner_id, template_kind, dict(context))
        except Exception:
            ops_logger.exception("notification_submit_failed", owner_id=owner_id, template=template_kind)
            return None

    def _deliver(self, owner_id: str, template_kind: str, context: dict[str, Any]) -> None:
        try:
            with self._session_factory() as db:
                user = db.get(User, owner_id)
                device_token = user.device_token if user is not None and user.is_active else None

            if not device_token:
                logger.info("notification_skipped_no_device", owner_id=owner_id, template=template_kind)
                return

            title, body, data = render_template(template_kind, context)
            try:
                self._transport.send(device_token, title, body, data)
            except InvalidDeviceToken as e:
                with self._session_factory() as db:
                    clear_device_token(db, owner_id, device_token)
                logger.info("notification_device_token_removed", owner_id=owner_id, template=template_kind, reason=e.reason)
                return
            logger.info("notification_sent", owner_id=owner_id, template=template_kind)
        except Exception:
            ops_logger.exception("notification_failed", owner_id=owner_id, template=template_kind)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
