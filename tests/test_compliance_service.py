"""
Tests for rule administration, product audits and the violation log.
"""

from datetime import date

import pytest

from app.services.catalog_store import CatalogStore
from app.services.compliance_service import ComplianceService, get_compliance_service
from app.services.errors import (
    AuditLogNotFoundError,
    ProductNotFoundError,
    RuleNotFoundError,
    ValidationError,
    ViolationAlreadyResolvedError,
)
from app.services.schemas import ComplianceRuleCreate, ComplianceRuleUpdate
from app.web.db.models import ComplianceAuditLog, ComplianceRule, VisibilityState


@pytest.fixture
def service(app):
    return ComplianceService()


@pytest.fixture
def store(app):
    return CatalogStore()


def violation_texts(violations):
    return [v.violation for v in violations]


class TestRuleAdministration:

    def test_list_rules_by_category(self, service, seeded_rules):
        rules = service.list_rules("Nicotine")
        assert [r.id for r in rules] == ["nicotine_obvious", "vaping_devices"]

    def test_list_rules_unknown_category(self, service, seeded_rules):
        with pytest.raises(ValidationError):
            service.list_rules("glassware")

    def test_create_rule_normalizes_states(self, service):
        rule = service.create_rule(ComplianceRuleCreate(
            id="delta8_products",
            name="Delta-8 Products",
            category="thca",
            restricted_states=[" co", "NY", "co"],
        ))
        assert rule.restricted_states == ["CO", "NY"]
        assert rule.seq == 1

    def test_create_duplicate_id(self, service, seeded_rules):
        with pytest.raises(ValidationError):
            service.create_rule(ComplianceRuleCreate(id="cbd_products", name="CBD", category="cbd"))

    def test_update_unknown_rule(self, service):
        with pytest.raises(RuleNotFoundError):
            service.update_rule("missing", ComplianceRuleUpdate(priority=10))

    def test_update_requires_fields(self, service, seeded_rules):
        with pytest.raises(ValidationError):
            service.update_rule("cbd_products", ComplianceRuleUpdate())


class TestStateCompliance:

    def test_restricted_state(self, service, store, seeded_rules, thca_product):
        store.create_product_compliance(thca_product.id, "thca_products")

        result = service.check_state_compliance(thca_product.id, "tx")

        assert result["allowed"] is False
        assert result["violations"] == ["Product contains thca which is restricted in TX"]
        assert "For adult use only (21+)" in result["warnings"]

    def test_unrestricted_state(self, service, store, seeded_rules, thca_product):
        store.create_product_compliance(thca_product.id, "thca_products")

        result = service.check_state_compliance(thca_product.id, "CO")

        assert result["allowed"] is True
        assert result["violations"] == []

    def test_invalid_state(self, service, thca_product):
        with pytest.raises(ValidationError):
            service.check_state_compliance(thca_product.id, "Texas")


class TestAssignCategory:

    def test_uses_existing_rule(self, service, seeded_rules, thca_product):
        rule = service.assign_category(thca_product.id, "thca")

        assert rule.id == "thca_products"
        assert thca_product.classified_categories == ["thca"]
        assert thca_product.classification_source == "manual"
        assert [r.id for r in CatalogStore().get_product_rules(thca_product.id)] == ["thca_products"]

    def test_creates_seed_rule_when_missing(self, service, thca_product):
        rule = service.assign_category(thca_product.id, "kratom")

        assert rule.id == "kratom_products"
        assert ComplianceRule.query.count() == 1

    def test_bare_rule_for_other(self, service, thca_product):
        rule = service.assign_category(thca_product.id, "other", substance_type="Glassware")

        assert rule.category == "other"
        assert rule.substance_type == "Glassware"

    def test_repeat_assignment_is_idempotent(self, service, seeded_rules, thca_product):
        service.assign_category(thca_product.id, "thca")
        service.assign_category(thca_product.id, "thca")

        assert thca_product.classified_categories == ["thca"]
        assert len(CatalogStore().get_product_compliance(thca_product.id)) == 1

    def test_unknown_product(self, service, seeded_rules):
        with pytest.raises(ProductNotFoundError):
            service.assign_category("missing", "thca")


class TestAuditProduct:

    def test_thca_missing_lab_batch_and_expiry(self, service, store, seeded_rules, thca_product):
        store.create_product_compliance(thca_product.id, "thca_products")

        violations = service.audit_product(thca_product.id)

        assert violation_texts(violations) == [
            "Missing required lab test results for thca product",
            "Missing required batch number for thca product",
            "Missing expiration date for thca product",
        ]
        assert [v.severity for v in violations] == ["high", "medium", "medium"]

    def test_compliant_thca_product(self, service, store, seeded_rules, make_product):
        product = make_product(
            name="Blue Dream Flower",
            lab_test_url="https://lab.example/coa.pdf",
            batch_number="BD-2024-118",
            expiration_date=date(2025, 3, 1),
        )
        store.create_product_compliance(product.id, "thca_products")

        assert service.audit_product(product.id) == []

    def test_visible_nicotine_is_critical(self, service, make_product, seeded_rules):
        product = make_product(name="Cool Mint Disposable", nicotine_product=True)

        violations = service.audit_product(product.id)

        assert ("Nicotine product visible on main site", "critical") in [
            (v.violation, v.severity) for v in violations
        ]

    def test_unclassified_keyword_category(self, service, seeded_rules, make_product):
        product = make_product(name="Red Bali Kratom Powder")

        violations = service.audit_product(product.id)

        assert violation_texts(violations) == ["Unclassified restricted category: kratom"]
        assert violations[0].severity == "medium"

    def test_stale_lab_flag(self, service, seeded_rules, make_product):
        product = make_product(name="Glass Spoon", requires_lab_test=True)

        violations = service.audit_product(product.id)

        assert violation_texts(violations) == ["Lab test required but not on file"]

    def test_audit_does_not_modify_product(self, service, seeded_rules, make_product):
        product = make_product(name="Zyn Cool Mint", nicotine_product=True)

        service.audit_product(product.id)

        assert product.visible_on_main_site is True


class TestAuditAll:

    def test_counts_and_logs(self, service, seeded_rules, make_product):
        make_product(name="Zyn Cool Mint", nicotine_product=True)
        make_product(name="Glass Spoon")

        totals = service.audit_all_products()

        assert totals["total_products"] == 2
        assert totals["errors"] == 0
        assert totals["critical_violations"] == 1
        assert totals["violations_found"] == 2
        entries = ComplianceAuditLog.query.all()
        assert len(entries) == 2
        assert {e.detected_by for e in entries} == {"system-audit"}


class TestViolationLog:

    @pytest.fixture
    def entries(self, service, store, thca_product):
        return [
            store.create_compliance_audit_log({
                "product_id": thca_product.id,
                "violation": f"Violation {severity}",
                "severity": severity,
            })
            for severity in ("low", "high", "critical", "critical")
        ]

    def test_resolve_once(self, service, entries):
        entry = service.resolve_violation(entries[0].id, "compliance-officer", "Relabeled")

        assert entry.resolved_by == "compliance-officer"
        assert entry.resolution_notes == "Relabeled"
        assert entry.resolved_at is not None

    def test_double_resolve_rejected(self, service, entries):
        service.resolve_violation(entries[0].id, "first")

        with pytest.raises(ViolationAlreadyResolvedError):
            service.resolve_violation(entries[0].id, "second")

        entry = CatalogStore().get_compliance_audit_log(entries[0].id)
        assert entry.resolved_by == "first"

    def test_resolve_unknown(self, service):
        with pytest.raises(AuditLogNotFoundError):
            service.resolve_violation("missing", "someone")

    def test_filters(self, service, entries):
        service.resolve_violation(entries[2].id, "someone")

        assert service.list_violations(severity="CRITICAL")["total"] == 2
        assert service.list_violations(severity="critical", resolved=False)["total"] == 1
        assert service.list_violations(resolved=True)["logs"][0]["id"] == entries[2].id
        assert service.list_violations()["total"] == 4

    def test_pagination(self, service, entries):
        page = service.list_violations(page=2, limit=3)
        assert page["total"] == 4
        assert len(page["logs"]) == 1

    @pytest.mark.parametrize("kwargs", [{"page": 0}, {"limit": 0}, {"limit": 201}, {"severity": "urgent"}])
    def test_invalid_query(self, service, kwargs):
        with pytest.raises(ValidationError):
            service.list_violations(**kwargs)

    def test_stats(self, service, seeded_rules, entries):
        service.resolve_violation(entries[0].id, "someone")

        stats = service.compliance_stats()

        assert stats["total_violations"] == 4
        assert stats["critical_violations"] == 2
        assert stats["resolved_violations"] == 1
        assert stats["unresolved_violations"] == 3
        assert stats["unresolved_by_severity"] == {"low": 0, "medium": 0, "high": 1, "critical": 2}
        assert stats["total_rules"] == 7
        assert stats["rules"]["by_action"]["restrict"] == 3


class TestResetVisibility:

    def test_reset_hidden_product(self, service, make_product):
        product = make_product(
            name="Kratom Capsules",
            visible_on_main_site=False,
            visibility_state=VisibilityState.HIDDEN_VIOLATION.value,
            hidden_reason="Matched hide rule: Kratom Products",
        )

        service.reset_visibility(product.id, "compliance-officer", "Relisted after review")

        assert product.visible_on_main_site is True
        assert product.visibility_state == VisibilityState.VISIBLE.value
        assert product.hidden_reason is None

        entry = ComplianceAuditLog.query.filter_by(product_id=product.id).one()
        assert entry.detected_by == "manual-reset"
        assert entry.severity == "low"
        assert entry.resolved_by == "compliance-officer"
        assert entry.notes == "Matched hide rule: Kratom Products"

    def test_nicotine_product_cannot_be_reset(self, service, make_product):
        product = make_product(
            name="Zyn Cool Mint",
            nicotine_product=True,
            visible_on_main_site=False,
            visibility_state=VisibilityState.HIDDEN_NICOTINE.value,
        )

        with pytest.raises(ValidationError):
            service.reset_visibility(product.id, "compliance-officer")

        assert product.visible_on_main_site is False


class TestServiceAccessor:

    def test_singleton(self, app):
        assert get_compliance_service() is get_compliance_service()

    def test_singleton_reads_current_app_catalog(self, app, seeded_rules):
        """Test the shared instance sees rules created after it was built."""
        service = get_compliance_service()
        before = len(service.list_rules())

        service.create_rule(ComplianceRuleCreate(name="Kava Extracts", category="other", keywords=["kava"]))

        assert len(service.list_rules()) == before + 1
        evaluation = service.catalog.keyword_engine().evaluate("Kava Root Tincture", "")
        assert [r.name for r in evaluation.triggered_rules] == ["Kava Extracts"]
