"""
Compliance Service - rule administration, product audits and the violation log.

- Rule administration: seed, create, update (each invalidates the catalog cache)
- Product view: state compliance, summary, category assignment, history
- Audits: re-run the keyword engine and check flags/associations, producing
  violations instead of correcting the product
- Violation log: record, list, resolve exactly once
- Visibility reset: the only way from hidden back to visible
"""

import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any

from app.services import visibility
from app.services.catalog_store import CatalogStore
from app.services.errors import ValidationError
from app.services.logging_utils import log_compliance_event, ComplianceRunLogger
from app.services.rule_catalog import (
    get_rule_catalog,
    invalidate_rule_catalog,
    initialize_default_rules as seed_default_rules,
    default_rule_for_category,
)
from app.services.schemas import ComplianceRuleCreate, ComplianceRuleUpdate
from app.web.db import db
from app.web.db.models import Category, Severity, ComplianceRule

logger = logging.getLogger(__name__)


@dataclass
class ComplianceViolation:
    product_id: str
    violation: str
    severity: str
    notes: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "violation": self.violation,
            "severity": self.severity,
            "notes": self.notes,
        }


class ComplianceService:
    """
    Usage:
        service = ComplianceService()
        violations = service.audit_product(product_id)
        service.log_violations(violations, source="manual-audit")
    """

    def __init__(self, store: Optional[CatalogStore] = None, catalog=None):
        self.store = store or CatalogStore()
        self._catalog = catalog

    @property
    def catalog(self):
        return self._catalog or get_rule_catalog()

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def initialize_default_rules(self) -> List[str]:
        created = seed_default_rules(self.store)
        log_compliance_event("default_rules_initialized", {"created": created})
        return created

    def list_rules(self, category: Optional[str] = None) -> List[ComplianceRule]:
        if category is None:
            return self.store.get_all_compliance_rules()
        try:
            category = Category(category).value
        except ValueError as e:
            raise ValidationError(f"Unknown category {category!r}") from e
        return self.store.get_compliance_rules_by_category(category)

    def create_rule(self, payload: ComplianceRuleCreate) -> ComplianceRule:
        if payload.id and self.store.get_compliance_rule(payload.id) is not None:
            raise ValidationError(f"Compliance rule {payload.id} already exists")

        rule = self.store.create_compliance_rule(payload.model_dump(mode="json"))
        invalidate_rule_catalog()
        logger.info(f"Created compliance rule {rule.id} ({rule.category})")
        return rule

    def update_rule(self, rule_id: str, payload: ComplianceRuleUpdate) -> ComplianceRule:
        patch = payload.model_dump(mode="json", exclude_unset=True)
        if not patch:
            raise ValidationError("No fields to update")
        rule = self.store.update_compliance_rule(rule_id, patch)
        invalidate_rule_catalog()
        logger.info(f"Updated compliance rule {rule_id}: {sorted(patch)}")
        return rule

    # -------------------------------------------------------------------------
    # Product view
    # -------------------------------------------------------------------------

    def check_state_compliance(self, product_id: str, state: str) -> Dict[str, Any]:
        """Whether a product may be sold in a state, given its associated rules."""
        state = (state or "").strip().upper()
        if len(state) != 2 or not state.isalpha():
            raise ValidationError(f"Invalid state code {state!r}")

        self.store.require_product(product_id)
        violations: List[str] = []
        warnings: List[str] = []

        for rule in self.store.get_product_rules(product_id):
            if state in (rule.restricted_states or []):
                violations.append(f"Product contains {rule.category} which is restricted in {state}")
            warnings.extend(rule.warning_labels or [])

        return {
            "allowed": not violations,
            "violations": violations,
            "warnings": list(dict.fromkeys(warnings)),
        }

    def product_summary(self, product_id: str) -> Dict[str, Any]:
        rules = self.store.get_product_rules(product_id)
        violations = self.audit_product(product_id)

        restricted_states: List[str] = []
        warnings: List[str] = []
        for rule in rules:
            restricted_states.extend(rule.restricted_states or [])
            warnings.extend(rule.warning_labels or [])

        return {
            "product_id": product_id,
            "compliant": not violations,
            "active_rules": [r.as_dict() for r in rules],
            "violations": [v.as_dict() for v in violations],
            "restricted_states": sorted(set(restricted_states)),
            "required_warnings": list(dict.fromkeys(warnings)),
        }

    def assign_category(self, product_id: str, category, substance_type: Optional[str] = None) -> ComplianceRule:
        """
        Manually associate a product with a category's rule.

        Uses the first catalog rule of the category, creating it from the
        default seed (or a bare rule) when the category has none.
        """
        category = Category(category).value
        product = self.store.require_product(product_id)

        rules = self.store.get_compliance_rules_by_category(category)
        if rules:
            rule = rules[0]
        else:
            seed = default_rule_for_category(category)
            data = dict(seed) if seed else {
                "name": f"{category} (manual)",
                "category": category,
                "substance_type": substance_type,
            }
            if seed and self.store.get_compliance_rule(seed["id"]) is not None:
                data.pop("id")
            rule = self.store.create_compliance_rule(data)
            invalidate_rule_catalog()
            logger.info(f"Created rule {rule.id} for manual {category} assignment")

        self.store.create_product_compliance(product.id, rule.id)

        categories = list(product.classified_categories or [])
        if category not in categories:
            categories.append(category)
        self.store.update_product(product.id, {
            "classified_categories": categories,
            "classification_source": "manual",
        })

        log_compliance_event("category_assigned", {
            "product_id": product.id,
            "category": category,
            "rule_id": rule.id,
        })
        return rule

    def classification_history(self, product_id: str) -> Dict[str, Any]:
        product = self.store.require_product(product_id)
        logs, _ = self.store.get_compliance_audit_logs(page=1, limit=50, product_id=product_id)
        return {
            "product_id": product.id,
            "product_name": product.name,
            "classified_categories": product.classified_categories or [],
            "classification_source": product.classification_source,
            "classified_at": product.classified_at.isoformat() if product.classified_at else None,
            "current_compliance": [r.as_dict() for r in self.store.get_product_rules(product.id)],
            "audit_history": [entry.as_dict() for entry in logs],
        }

    def reset_visibility(self, product_id: str, reset_by: str, notes: Optional[str] = None):
        """Make a hidden product visible again and record who did it."""
        product = self.store.require_product(product_id)
        if product.nicotine_product:
            raise ValidationError("Nicotine products cannot be shown on the main site")
        previous_state = product.visibility_state
        previous_reason = product.hidden_reason

        product = self.store.update_product(product.id, visibility.reset_patch())

        entry = self.store.create_compliance_audit_log({
            "product_id": product.id,
            "violation": f"Visibility reset from {previous_state} to visible",
            "severity": Severity.LOW.value,
            "notes": previous_reason,
            "detected_by": "manual-reset",
        })
        entry.mark_resolved(reset_by, notes)
        db.session.commit()

        logger.info(f"Visibility of {product.id} reset by {reset_by} (was {previous_state})")
        return product

    # -------------------------------------------------------------------------
    # Audits
    # -------------------------------------------------------------------------

    def audit_product(self, product_id: str) -> List[ComplianceViolation]:
        """Check a product against its associated rules and the keyword engine."""
        product = self.store.require_product(product_id)
        rules = self.store.get_product_rules(product_id)

        violations: List[ComplianceViolation] = []
        seen = set()

        def add(violation: str, severity: Severity, notes: str):
            if violation in seen:
                return
            seen.add(violation)
            violations.append(ComplianceViolation(product.id, violation, severity.value, notes))

        for rule in rules:
            if rule.lab_testing_required and not product.lab_test_url:
                add(f"Missing required lab test results for {rule.category} product", Severity.HIGH,
                    "Lab testing is required for this substance category")

            if rule.batch_tracking_required and not product.batch_number:
                add(f"Missing required batch number for {rule.category} product", Severity.MEDIUM,
                    "Batch tracking is required for this substance category")

            if rule.batch_tracking_required and not product.expiration_date:
                add(f"Missing expiration date for {rule.category} product", Severity.MEDIUM,
                    "Expiration date tracking is required for this substance category")

        nicotine_linked = any(r.category == Category.NICOTINE.value for r in rules)
        if (nicotine_linked or product.nicotine_product) and product.visible_on_main_site:
            add("Nicotine product visible on main site", Severity.CRITICAL,
                "Nicotine products must only be visible on tobacco-specific site")

        lab_missing_reported = any(r.lab_testing_required for r in rules) and not product.lab_test_url
        if product.requires_lab_test and not lab_missing_reported:
            add("Lab test required but not on file", Severity.HIGH,
                "requires_lab_test is still set for this product")

        associated_categories = {r.category for r in rules}
        evaluation = self.catalog.keyword_engine().evaluate(product.name, product.description)
        for category in evaluation.categories:
            if category not in associated_categories:
                add(f"Unclassified restricted category: {category}", Severity.MEDIUM,
                    f"Keyword rules match {category} but no {category} rule is associated")

        return violations

    def log_violations(self, violations: List[ComplianceViolation], source: str = "system"):
        entries = []
        for violation in violations:
            entries.append(self.store.create_compliance_audit_log({
                "product_id": violation.product_id,
                "violation": violation.violation,
                "severity": violation.severity,
                "notes": violation.notes,
                "detected_by": source,
            }))
        if entries:
            logger.info(f"Logged {len(entries)} violations from {source}")
        return entries

    def audit_all_products(self) -> Dict[str, Any]:
        """Audit every product and log what is found. Per-product errors are counted, not raised."""
        products = self.store.list_products(active_only=False)
        totals = {
            "total_products": len(products),
            "violations_found": 0,
            "critical_violations": 0,
            "errors": 0,
        }

        with ComplianceRunLogger("audit_all", total=len(products)) as run:
            for product in products:
                try:
                    violations = self.audit_product(product.id)
                    self.log_violations(violations, source="system-audit")
                except Exception as e:
                    db.session.rollback()
                    logger.error(f"Audit failed for {product.id}: {e}")
                    totals["errors"] += 1
                    run.log_item("audit_failed", {"product_id": product.id, "error": str(e)})
                    continue

                totals["violations_found"] += len(violations)
                totals["critical_violations"] += sum(
                    1 for v in violations if v.severity == Severity.CRITICAL.value
                )

        return totals

    # -------------------------------------------------------------------------
    # Violation log
    # -------------------------------------------------------------------------

    def list_violations(
        self,
        page: int = 1,
        limit: int = 50,
        severity: Optional[str] = None,
        resolved: Optional[bool] = None,
    ) -> Dict[str, Any]:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= limit <= 200:
            raise ValidationError("limit must be between 1 and 200")
        if severity is not None:
            try:
                severity = Severity(severity.lower()).value
            except ValueError as e:
                raise ValidationError(f"Unknown severity {severity!r}") from e

        entries, total = self.store.get_compliance_audit_logs(
            page=page, limit=limit, severity=severity, resolved=resolved
        )
        return {
            "page": page,
            "limit": limit,
            "total": total,
            "logs": [e.as_dict() for e in entries],
        }

    def resolve_violation(self, log_id: str, resolved_by: str, notes: Optional[str] = None):
        entry = self.store.resolve_compliance_violation(log_id, resolved_by, notes)
        log_compliance_event("violation_resolved", {"log_id": log_id, "resolved_by": resolved_by})
        return entry

    def compliance_stats(self) -> Dict[str, Any]:
        stats = self.store.get_compliance_stats()
        stats["rules"] = self.catalog.keyword_engine().rule_stats()
        return stats


_service: Optional[ComplianceService] = None


def get_compliance_service() -> ComplianceService:
    """Get the singleton compliance service instance."""
    global _service
    if _service is None:
        _service = ComplianceService()
    return _service
