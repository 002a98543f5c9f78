"""
Compliance rule catalog and audit trail models.

- ComplianceRule: regulatory category, detection keywords, enforcement action,
  shipping restrictions and the states where the category is restricted
- ProductCompliance: product <-> rule association (unique, created idempotently)
- ComplianceAuditLog: violations found by audits, resolved exactly once

Rules are edited by compliance administrators only. The classification and
eligibility services read them through the rule catalog cache and never write
them.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from app.web.db import db
from app.web.db.models.base import BaseModel


# =============================================================================
# Enums
# =============================================================================

class Category(str, Enum):
    """Regulatory categories. Values are the stored slugs."""
    THCA = "thca"
    KRATOM = "kratom"
    SEVEN_HYDROXY = "7-hydroxy"
    NICOTINE = "nicotine"
    TOBACCO = "tobacco"
    CBD = "cbd"
    OTHER = "other"

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        normalized = _CATEGORY_ALIASES.get(normalized, normalized)
        for member in cls:
            if member.value == normalized:
                return member
        return None


_CATEGORY_ALIASES = {
    "sevenhydroxy": "7-hydroxy",
    "seven_hydroxy": "7-hydroxy",
    "7-oh": "7-hydroxy",
    "7oh": "7-hydroxy",
}


class RuleAction(str, Enum):
    """Enforcement action a triggered keyword rule asks for."""
    HIDE = "hide"
    RESTRICT = "restrict"
    FLAG = "flag"
    REQUIRE_VERIFICATION = "require_verification"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# =============================================================================
# Compliance Rule
# =============================================================================

class ComplianceRule(BaseModel):
    """
    A catalog entry mapping a regulatory category to keywords, an action and
    jurisdiction-specific shipping constraints.

    seq records catalog declaration order; it breaks priority ties in the
    keyword engine.

    shipping_restrictions JSON shape:
        {
            "carrier_restrictions": ["FedEx", "UPS"],
            "requires_adult_signature": true,
            "max_quantity_per_order": 10,
            "no_international_shipping": true
        }
    """
    __tablename__ = "compliance_rules"

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid4()))
    seq = db.Column(db.Integer, nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=False, index=True)
    substance_type = db.Column(db.String(200), nullable=True)

    # Keyword engine
    keywords = db.Column(db.JSON, nullable=False, default=list)
    action = db.Column(db.String(32), nullable=False, default=RuleAction.FLAG.value)
    priority = db.Column(db.Integer, nullable=False, default=0)

    # Jurisdiction
    restricted_states = db.Column(db.JSON, nullable=False, default=list)  # ["TX", "UT"]
    age_requirement = db.Column(db.Integer, nullable=True)
    shipping_restrictions = db.Column(db.JSON, nullable=True)

    # Audit requirements
    lab_testing_required = db.Column(db.Boolean, nullable=False, default=False)
    batch_tracking_required = db.Column(db.Boolean, nullable=False, default=False)
    warning_labels = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                           onupdate=datetime.utcnow)

    product_links = db.relationship("ProductCompliance", backref="rule", lazy="dynamic",
                                    cascade="all, delete-orphan")

    @classmethod
    def next_seq(cls) -> int:
        current = db.session.query(db.func.max(cls.seq)).scalar()
        return (current or 0) + 1

    @classmethod
    def get_by_category(cls, category: str) -> List["ComplianceRule"]:
        return cls.query.filter_by(category=category).order_by(cls.seq).all()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "seq": self.seq,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "substance_type": self.substance_type,
            "keywords": list(self.keywords or []),
            "action": self.action,
            "priority": self.priority,
            "restricted_states": list(self.restricted_states or []),
            "age_requirement": self.age_requirement,
            "shipping_restrictions": self.shipping_restrictions,
            "lab_testing_required": self.lab_testing_required,
            "batch_tracking_required": self.batch_tracking_required,
            "warning_labels": list(self.warning_labels or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ComplianceRule {self.id} {self.category} p={self.priority}>"


# =============================================================================
# Product <-> Rule Association
# =============================================================================

class ProductCompliance(BaseModel):
    """Links a product to a compliance rule. One row per (product, rule)."""
    __tablename__ = "product_compliance"
    __table_args__ = (
        UniqueConstraint("product_id", "compliance_rule_id", name="uq_product_compliance"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.String(64), db.ForeignKey("products.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    compliance_rule_id = db.Column(db.String(64),
                                   db.ForeignKey("compliance_rules.id", ondelete="CASCADE"),
                                   nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "compliance_rule_id": self.compliance_rule_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =============================================================================
# Audit Log
# =============================================================================

class ComplianceAuditLog(BaseModel):
    """
    A compliance violation found by an audit.

    Immutable once created except for the resolution stamp
    (resolved_by, resolved_at, resolution_notes), which is applied once.
    """
    __tablename__ = "compliance_audit_log"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    product_id = db.Column(db.String(64), nullable=False, index=True)

    violation = db.Column(db.Text, nullable=False)
    severity = db.Column(db.String(16), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)
    detected_by = db.Column(db.String(64), nullable=False, default="system")
    detected_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Resolution stamp
    resolved_by = db.Column(db.String(100), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def mark_resolved(self, resolved_by: str, notes: Optional[str] = None):
        """Apply the resolution stamp. Caller commits."""
        self.resolved_by = resolved_by
        self.resolved_at = datetime.utcnow()
        self.resolution_notes = notes

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "violation": self.violation,
            "severity": self.severity,
            "notes": self.notes,
            "detected_by": self.detected_by,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
        }
