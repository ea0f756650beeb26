"""
Unit tests for push notification dispatch.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from compound_access.services.notification_dispatcher import NotificationDispatcher, render_template
from compound_access.services.push_transport import InvalidDeviceToken
from conftest import FailingTransport


class RejectingTransport:
    def __init__(self):
        self.calls = 0

    def send(self, device_token, title, body, data):
        self.calls += 1
        raise InvalidDeviceToken(device_token, "Requested entity was not found.")


class TestRenderTemplate:
    def test_visitor_scan(self):
        title, body, data = render_template("qr_scanned", {"category": "visitor", "visitor_name": "Sara", "location_tag": "north-gate", "token_id": "t1"})
        assert title == "Visitor arrived"
        assert body == "Sara was granted access at north-gate."
        assert data == {"type": "qr_scan", "category": "visitor", "token_id": "t1", "location": "north-gate"}

    def test_owner_scan(self):
        _, body, _ = render_template("qr_scanned", {"category": "pool", "access_type": "Pool Access"})
        assert body == "Your Pool Access QR code was used."

    def test_season_expiring(self):
        title, body, data = render_template("season_expiring", {"season_name": "Summer", "days_until_expiry": 5, "season_id": "s1"})
        assert title == "Season Expiring Soon"
        assert "5 days" in body
        assert data["season_id"] == "s1"

    def test_payment_reminder(self):
        title, body, data = render_template(
            "payment_reminder",
            {"season_name": "Summer", "service_name": "Pool Access", "amount": "1500.00", "unit_number": "A-101"},
        )
        assert title == "Payment Reminder"
        assert body == "Payment of 1500.00 for Pool Access (Summer) is due. Please complete your payment to maintain facility access."
        assert data == {
            "type": "payment_reminder",
            "season_name": "Summer",
            "service_name": "Pool Access",
            "due_amount": "1500.00",
            "unit_number": "A-101",
        }

    def test_payment_reminder_without_amount(self):
        _, body, _ = render_template("payment_reminder", {"season_name": "Summer", "service_name": "Beach Access"})
        assert body.startswith("Payment for Beach Access (Summer) is due.")

    def test_unknown_template(self):
        with pytest.raises(ValueError):
            render_template("birthday", {})


class TestNotificationDispatcher:
    def test_delivers_to_device(self, world, notifier, transport):
        future = notifier.send(world.owner.id, "qr_scanned", {"category": "gate", "access_type": "Gate Access"})
        future.result(timeout=5)

        assert transport.sent[0]["device_token"] == "device-owner"
        assert transport.sent[0]["title"] == "QR code scanned"

    def test_no_owner_is_a_noop(self, notifier, transport):
        assert notifier.send(None, "qr_scanned", {}) is None
        assert transport.sent == []

    def test_user_without_device_is_skipped(self, world, notifier, transport):
        notifier.send(world.guard.id, "qr_scanned", {"category": "gate"}).result(timeout=5)
        assert transport.sent == []

    def test_transport_failure_is_swallowed(self, world, session_factory):
        transport = FailingTransport()
        dispatcher = NotificationDispatcher(session_factory, transport, executor=ThreadPoolExecutor(max_workers=1))
        try:
            future = dispatcher.send(world.owner.id, "qr_scanned", {"category": "gate"})
            assert future.result(timeout=5) is None
        finally:
            dispatcher.shutdown(wait=True)
        assert transport.calls == 1

    def test_send_after_shutdown_does_not_raise(self, world, session_factory, transport):
        dispatcher = NotificationDispatcher(session_factory, transport, max_workers=1)
        dispatcher.shutdown(wait=True)

        assert dispatcher.send(world.owner.id, "qr_scanned", {"category": "gate"}) is None

    def test_rejected_device_token_is_cleared(self, db, world, session_factory):
        transport = RejectingTransport()
        dispatcher = NotificationDispatcher(session_factory, transport, executor=ThreadPoolExecutor(max_workers=1))
        try:
            dispatcher.send(world.owner.id, "qr_scanned", {"category": "gate"}).result(timeout=5)
            dispatcher.send(world.owner.id, "qr_scanned", {"category": "gate"}).result(timeout=5)
        finally:
            dispatcher.shutdown(wait=True)

        db.refresh(world.owner)
        assert world.owner.device_token is None
        assert transport.calls == 1

    def test_exposes_transport(self, notifier, transport):
        assert notifier.transport is transport
