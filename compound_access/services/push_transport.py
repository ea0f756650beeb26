from __future__ import annotations

from typing import Any, Mapping, Protocol

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from compound_access.core.config import get_settings
from compound_access.core.logging import get_logger

logger = get_logger(__name__)

FIREBASE_APP_NAME = "compound-access"

# Errors meaning the device token itself will never be deliverable.
INVALID_TOKEN_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
    exceptions.InvalidArgumentError,
)


class PushTransport(Protocol):
    def send(self, device_token: str, title: str, body: str, data: Mapping[str, Any]) -> None: ...

    def is_deliverable(self, device_token: str) -> bool: ...


class InvalidDeviceToken(Exception):
    """The push provider rejected the device token permanently."""

    def __init__(self, device_token: str, reason: str = ""):
        self.device_token = device_token
        self.reason = reason
        super().__init__(reason or "invalid device token")


def _string_data(data: Mapping[str, Any]) -> dict[str, str]:
    # FCM data values must be strings
    return {k: "" if v is None else str(v) for k, v in data.items()}


class FirebasePushTransport:
    """Firebase Cloud Messaging through the Admin SDK."""

    def __init__(self, app: firebase_admin.App):
        self.app = app

    @classmethod
    def from_service_account(cls, credentials_path: str, project_id: str = "") -> "FirebasePushTransport":
        try:
            app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            options = {"projectId": project_id} if project_id else None
            app = firebase_admin.initialize_app(credentials.Certificate(credentials_path), options, name=FIREBASE_APP_NAME)
            logger.info("firebase_initialized", project_id=project_id or None)
        return cls(app)

    def send(self, device_token: str, title: str, body: str, data: Mapping[str, Any]) -> None:
        message = messaging.Message(
            token=device_token,
            notification=messaging.Notification(title=title, body=body),
            data=_string_data(data),
            android=messaging.AndroidConfig(priority="high"),
            apns=messaging.APNSConfig(payload=messaging.APNSPayload(aps=messaging.Aps(sound="default"))),
        )
        try:
            messaging.send(message, app=self.app)
        except INVALID_TOKEN_ERRORS as e:
            raise InvalidDeviceToken(device_token, str(e)) from e

    def is_deliverable(self, device_token: str) -> bool:
        """Dry-run a data message; only a permanent token rejection counts as undeliverable."""
        message = messaging.Message(token=device_token, data={"test": "true"})
        try:
            messaging.send(message, dry_run=True, app=self.app)
        except INVALID_TOKEN_ERRORS as e:
            logger.info("device_token_rejected", code=getattr(e, "code", None))
            return False
        return True


class LoggingPushTransport:
    """Used when push is not configured: records what would have been sent."""

    def send(self, device_token: str, title: str, body: str, data: Mapping[str, Any]) -> None:
        logger.info("push_disabled_would_send", title=title, body=body, data=dict(data))

    def is_deliverable(self, device_token: str) -> bool:
        return True


def build_transport() -> PushTransport:
    settings = get_settings()
    if not settings.firebase_credentials_path:
        return LoggingPushTransport()
    return FirebasePushTransport.from_service_account(settings.firebase_credentials_path, settings.firebase_project_id)
