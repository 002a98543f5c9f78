"""
Catalog and geographic store adapters.

The compliance core talks to the database only through these two classes:
- CatalogStore: products, compliance rules, product<->rule associations,
  lab certificates and the compliance audit log
- ZipcodeStore: ZIP -> state/city/county lookups

Methods commit their own writes. Lookups return None for a missing row;
require_* variants raise the matching NotFoundError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError

from app.services.errors import (
    ProductNotFoundError,
    RuleNotFoundError,
    AuditLogNotFoundError,
    ViolationAlreadyResolvedError,
)
from app.web.db import db
from app.web.db.models import (
    Product,
    ComplianceRule,
    ProductCompliance,
    ComplianceAuditLog,
    LabCertificate,
    UsZipcode,
    Severity,
    VisibilityState,
)

logger = logging.getLogger(__name__)


class CatalogStore:

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    def get_product(self, product_id: str) -> Optional[Product]:
        return db.session.get(Product, product_id)

    def require_product(self, product_id: str) -> Product:
        product = self.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return product

    def update_product(self, product_id: str, patch: Dict[str, Any]) -> Product:
        product = self.require_product(product_id)
        product.update(**patch)
        return product

    def list_products(self, limit: Optional[int] = None, active_only: bool = True) -> List[Product]:
        query = Product.query
        if active_only:
            query = query.filter(Product.is_active.is_(True))
        query = query.order_by(Product.created_at, Product.id)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    # -------------------------------------------------------------------------
    # Compliance rules
    # -------------------------------------------------------------------------

    def get_all_compliance_rules(self) -> List[ComplianceRule]:
        return ComplianceRule.query.order_by(ComplianceRule.seq).all()

    def get_compliance_rules_by_category(self, category: str) -> List[ComplianceRule]:
        return ComplianceRule.get_by_category(category)

    def get_compliance_rule(self, rule_id: str) -> Optional[ComplianceRule]:
        return db.session.get(ComplianceRule, rule_id)

    def create_compliance_rule(self, data: Dict[str, Any]) -> ComplianceRule:
        data = dict(data)
        if data.get("id") is None:
            data.pop("id", None)
        data["seq"] = ComplianceRule.next_seq()
        return ComplianceRule.create(**data)

    def update_compliance_rule(self, rule_id: str, patch: Dict[str, Any]) -> ComplianceRule:
        rule = self.get_compliance_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Compliance rule {rule_id} not found")
        rule.update(**patch)
        return rule

    # -------------------------------------------------------------------------
    # Product <-> rule associations
    # -------------------------------------------------------------------------

    def _find_association(self, product_id: str, rule_id: str) -> Optional[ProductCompliance]:
        return ProductCompliance.query.filter_by(
            product_id=product_id, compliance_rule_id=rule_id
        ).first()

    def create_product_compliance(self, product_id: str, rule_id: str) -> ProductCompliance:
        """Create the association, or return the existing one."""
        existing = self._find_association(product_id, rule_id)
        if existing is not None:
            return existing

        link = ProductCompliance(product_id=product_id, compliance_rule_id=rule_id)
        try:
            with db.session.begin_nested():
                db.session.add(link)
        except IntegrityError:
            # concurrent insert won
            logger.debug(f"Association {product_id} -> {rule_id} already exists")
            return self._find_association(product_id, rule_id)

        db.session.commit()
        return link

    def delete_product_compliance(self, product_id: str, rule_id: str) -> bool:
        link = self._find_association(product_id, rule_id)
        if link is None:
            return False
        db.session.delete(link)
        db.session.commit()
        return True

    def get_product_compliance(self, product_id: str) -> List[ProductCompliance]:
        return (
            ProductCompliance.query
            .filter_by(product_id=product_id)
            .order_by(ProductCompliance.id)
            .all()
        )

    def get_product_rules(self, product_id: str) -> List[ComplianceRule]:
        """Rules associated with a product, in catalog order."""
        return (
            ComplianceRule.query
            .join(ProductCompliance, ProductCompliance.compliance_rule_id == ComplianceRule.id)
            .filter(ProductCompliance.product_id == product_id)
            .order_by(ComplianceRule.seq)
            .all()
        )

    # -------------------------------------------------------------------------
    # Lab certificates
    # -------------------------------------------------------------------------

    def create_lab_certificate(self, data: Dict[str, Any]) -> LabCertificate:
        return LabCertificate.create(**data)

    def get_lab_certificates(self, product_id: str) -> List[LabCertificate]:
        """Certificates for a product, newest first."""
        return (
            LabCertificate.query
            .filter_by(product_id=product_id)
            .order_by(desc(LabCertificate.created_at))
            .all()
        )

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    def create_compliance_audit_log(self, data: Dict[str, Any]) -> ComplianceAuditLog:
        return ComplianceAuditLog.create(**data)

    def get_compliance_audit_log(self, log_id: str) -> Optional[ComplianceAuditLog]:
        return db.session.get(ComplianceAuditLog, log_id)

    def get_compliance_audit_logs(
        self,
        page: int = 1,
        limit: int = 50,
        severity: Optional[str] = None,
        resolved: Optional[bool] = None,
        product_id: Optional[str] = None,
    ) -> Tuple[List[ComplianceAuditLog], int]:
        """
        Page through audit entries, newest first.

        Returns:
            (entries, total matching entries)
        """
        query = ComplianceAuditLog.query
        if severity:
            query = query.filter(ComplianceAuditLog.severity == severity)
        if resolved is True:
            query = query.filter(ComplianceAuditLog.resolved_at.isnot(None))
        elif resolved is False:
            query = query.filter(ComplianceAuditLog.resolved_at.is_(None))
        if product_id:
            query = query.filter(ComplianceAuditLog.product_id == product_id)

        total = query.count()
        entries = (
            query.order_by(desc(ComplianceAuditLog.detected_at), ComplianceAuditLog.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return entries, total

    def resolve_compliance_violation(
        self, log_id: str, resolved_by: str, notes: Optional[str] = None
    ) -> ComplianceAuditLog:
        """
        Stamp a violation as resolved.

        The UPDATE only matches unresolved rows, so of two concurrent
        resolutions exactly one wins.
        """
        updated = (
            ComplianceAuditLog.query
            .filter(ComplianceAuditLog.id == log_id, ComplianceAuditLog.resolved_at.is_(None))
            .update(
                {
                    "resolved_by": resolved_by,
                    "resolved_at": datetime.utcnow(),
                    "resolution_notes": notes,
                },
                synchronize_session=False,
            )
        )
        db.session.commit()

        entry = self.get_compliance_audit_log(log_id)
        if entry is None:
            raise AuditLogNotFoundError(f"Audit log entry {log_id} not found")
        if not updated:
            raise ViolationAlreadyResolvedError(
                f"Violation {log_id} was already resolved by {entry.resolved_by}"
            )
        db.session.refresh(entry)
        return entry

    def get_compliance_stats(self) -> Dict[str, Any]:
        log = ComplianceAuditLog
        total = log.query.count()
        resolved = log.query.filter(log.resolved_at.isnot(None)).count()
        critical = log.query.filter(log.severity == Severity.CRITICAL.value).count()

        by_severity = dict(
            db.session.query(log.severity, db.func.count(log.id))
            .filter(log.resolved_at.is_(None))
            .group_by(log.severity)
            .all()
        )

        return {
            "total_violations": total,
            "critical_violations": critical,
            "resolved_violations": resolved,
            "unresolved_violations": total - resolved,
            "unresolved_by_severity": {s.value: by_severity.get(s.value, 0) for s in Severity},
            "total_rules": ComplianceRule.query.count(),
            "hidden_products": Product.query.filter(
                Product.visibility_state != VisibilityState.VISIBLE.value
            ).count(),
        }


# =============================================================================
# Geographic reference store
# =============================================================================

@dataclass(frozen=True)
class ZipLocation:
    zip: str
    state: str
    city: Optional[str] = None
    county: Optional[str] = None


class ZipcodeStore:

    def resolve_zip(self, zip_code: str) -> Optional[ZipLocation]:
        row = db.session.get(UsZipcode, zip_code)
        if row is None:
            return None
        return ZipLocation(zip=row.zip, state=row.state, city=row.city, county=row.county)

    def upsert(self, rows: List[Dict[str, Any]]) -> int:
        """Insert or replace ZIP rows. Returns the number written."""
        for data in rows:
            db.session.merge(UsZipcode(**data))
        db.session.commit()
        return len(rows)
