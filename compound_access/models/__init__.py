# Import all models so that SQLAlchemy registers them for metadata.create_all
from compound_access.models.compound import Compound
from compound_access.models.user import User
from compound_access.models.unit import Unit, UnitUser
from compound_access.models.billing import Season, Service, Payment
from compound_access.models.access_token import AccessToken
from compound_access.models.scan_attempt import ScanAttempt
from compound_access.models.audit_log import AuditLog

__all__ = [
    "Compound",
    "User",
    "Unit",
    "UnitUser",
    "Season",
    "Service",
    "Payment",
    "AccessToken",
    "ScanAttempt",
    "AuditLog",
]
