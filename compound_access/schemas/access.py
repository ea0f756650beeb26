from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from compound_access.core.errors import ErrorResponse


class ScanRequest(BaseModel):
    code: str = Field(min_length=1, max_length=512)
    location_tag: str | None = Field(default=None, max_length=64)


class ScanResult(BaseModel):
    outcome: str  # granted/denied
    denial_reason: str | None = None
    profile: dict[str, Any] | None = None
    payment: dict[str, Any] | None = None
    error: ErrorResponse | None = None  # set on denials


class VisitorTokenCreate(BaseModel):
    unit_id: str
    visitor_name: str = Field(min_length=1, max_length=255)
    visitor_phone: str | None = Field(default=None, max_length=32)
    vehicle_plate: str | None = Field(default=None, max_length=32)
    num_persons: int = Field(default=1, ge=1, le=50)

    valid_from: datetime | None = None  # defaults to now
    valid_to: datetime | None = None  # defaults to valid_from + visitor_default_hours

    single_use: bool = True
    max_uses: int | None = Field(default=1, ge=1, le=1000)


class VisitorTokenIssued(BaseModel):
    opaque_code: str
    record_id: str
    valid_from: datetime
    valid_to: datetime
    single_use: bool
    max_uses: int | None


class VisitorTokenOut(BaseModel):
    id: str
    visitor_name: str | None
    visitor_phone: str | None
    vehicle_plate: str | None
    person_count: int | None
    unit_number: str | None
    valid_from: datetime
    valid_to: datetime
    active: bool
    max_uses: int | None
    current_uses: int
    scan_count: int
    last_scanned_at: datetime | None
    created_at: datetime


class OwnerTokenOut(BaseModel):
    opaque_code: str
    token_id: str
    category: str
    facility_subtype: str | None
    access_type: str
    unit_id: str
    unit_number: str
    valid_from: datetime
    valid_to: datetime

    class Config:
        from_attributes = True


class RevokeResult(BaseModel):
    revoked: bool


class ScanAttemptOut(BaseModel):
    id: str
    token_id: str | None
    scanner_user_id: str
    compound_id: str
    scanned_at: datetime
    outcome: str
    denial_reason: str | None
    location_tag: str | None

    class Config:
        from_attributes = True


class ScanHistoryOut(BaseModel):
    items: list[ScanAttemptOut]
    page: int
    page_size: int
    total: int
    pages: int
