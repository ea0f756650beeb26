from __future__ import annotations

import enum


class TokenCategory(str, enum.Enum):
    VISITOR = "visitor"
    GATE = "gate"
    POOL = "pool"
    FACILITY = "facility"

    @property
    def is_owner(self) -> bool:
        return self is not TokenCategory.VISITOR


class FacilitySubtype(str, enum.Enum):
    KIDS_AREA = "kids_area"
    BEACH = "beach"


class ScanOutcomeKind(str, enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"


class DenialReason(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    CROSS_COMPOUND = "CROSS_COMPOUND"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    NOT_YET_VALID = "NOT_YET_VALID"
    MAX_USES_EXCEEDED = "MAX_USES_EXCEEDED"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"


class Role(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    MANAGEMENT = "management"
    OWNER = "owner"
    SECURITY = "security"
    POOL_STAFF = "pool_staff"
    FACILITY_STAFF = "facility_staff"


SCANNER_ROLES = {Role.SECURITY.value, Role.POOL_STAFF.value, Role.FACILITY_STAFF.value, Role.MANAGEMENT.value}
ADMIN_ROLES = {Role.MANAGEMENT.value, Role.SUPER_ADMIN.value}


class PaymentStatus(str, enum.Enum):
    PAID = "paid"
    DUE = "due"
    OVERDUE = "overdue"
