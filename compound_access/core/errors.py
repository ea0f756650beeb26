"""Error taxonomy for the access engine.

NotFound, ScopeViolation, StateViolation and EntitlementDenied describe
expected scan outcomes. The validation engine maps each deny reason onto
one of them for the error body of the scan response; they are only
raised as HTTP errors by the management operations (revoke, history).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessError(Exception):
    """Base exception; carries the HTTP status the API layer renders."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(code=self.code, message=self.message, details=self.details)


class NotFound(AccessError):
    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ScopeViolation(AccessError):
    status_code = 403

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__("SCOPE_VIOLATION", message, details)


class StateViolation(AccessError):
    status_code = 409

    def __init__(self, message: str = "Token is not usable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STATE_VIOLATION", message, details)


class EntitlementDenied(AccessError):
    status_code = 402

    def __init__(self, message: str = "Payment required for access", details: Optional[Dict[str, Any]] = None):
        super().__init__("PAYMENT_REQUIRED", message, details)


class TransientInfra(AccessError):
    status_code = 503

    def __init__(self, message: str = "Access store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSIENT_INFRA", message, details)


class InvalidWindow(AccessError):
    status_code = 400

    def __init__(self, message: str = "valid_to must be after valid_from", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_WINDOW", message, details)


class ScopeConflict(AccessError):
    status_code = 403

    def __init__(self, message: str = "No entitlement for this scope", details: Optional[Dict[str, Any]] = None):
        super().__init__("SCOPE_CONFLICT", message, details)


class RateLimited(AccessError):
    status_code = 429

    def __init__(self, message: str = "Too many requests, please slow down", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMITED", message, details)


class AuthenticationFailed(AccessError):
    status_code = 401

    def __init__(self, message: str = "Invalid token", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_FAILED", message, details)
