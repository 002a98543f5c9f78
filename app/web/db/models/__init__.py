from .base import BaseModel as Model
from .compliance import (
    Category,
    RuleAction,
    Severity,
    ComplianceRule,
    ProductCompliance,
    ComplianceAuditLog,
)
from .product import VisibilityState, Product, LabCertificate
from .zipcode import UsZipcode
