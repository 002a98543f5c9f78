"""
Tests for destination eligibility.

Tests:
- ZIP validation happens before any lookup
- Unknown ZIP
- Category aggregation and shipping restriction merging
- Merge algebra (commutative, associative, identity)
"""

import itertools

import pytest
from unittest.mock import Mock

from app.services.catalog_store import ZipcodeStore
from app.services.compliance_service import ComplianceService
from app.services.eligibility import (
    EligibilityAggregator,
    MergedShippingRestrictions,
    check_eligibility,
    merge_shipping_restrictions,
    normalize_zip,
)
from app.services.errors import InvalidZipError, ZipNotFoundError
from app.services.rule_catalog import ShippingRestrictions
from app.services.schemas import ComplianceRuleCreate


def make_rule(name, category, states, priority=50, **shipping):
    return ComplianceService().create_rule(ComplianceRuleCreate(
        name=name,
        category=category,
        action="restrict",
        priority=priority,
        restricted_states=states,
        shipping_restrictions=shipping or None,
    ))


class TestZipValidation:

    @pytest.mark.parametrize("value", ["abc12", "1234", "123456", "", None, "12-34", "7330a"])
    def test_invalid_zip_rejected_before_lookup(self, value):
        zip_store = Mock()
        aggregator = EligibilityAggregator(zip_store=zip_store, catalog=Mock())

        with pytest.raises(InvalidZipError):
            aggregator.check_eligibility(value)

        zip_store.resolve_zip.assert_not_called()

    def test_whitespace_stripped(self):
        assert normalize_zip(" 73301 ") == "73301"

    def test_unknown_zip(self, app, zipcodes):
        with pytest.raises(ZipNotFoundError):
            check_eligibility("99999")


class TestAggregation:

    def test_seeded_catalog_texas(self, app, seeded_rules, zipcodes):
        result = EligibilityAggregator().check_eligibility("73301")

        assert result.state == "TX"
        assert result.city == "Austin"
        assert result.county == "Travis"
        assert result.restricted_categories == ["thca"]
        assert result.shipping_restrictions.as_dict() == {
            "carrier_restrictions": ["FedEx", "UPS"],
            "requires_adult_signature": True,
            "max_quantity_per_order": 10,
            "no_international_shipping": True,
        }

    def test_seeded_catalog_priority_order(self, app, seeded_rules):
        ZipcodeStore().upsert([{"zip": "37201", "state": "TN", "city": "Nashville", "county": "Davidson"}])

        result = EligibilityAggregator().check_eligibility("37201")

        assert result.restricted_categories == ["thca", "7-hydroxy"]
        assert result.shipping_restrictions.max_quantity_per_order == 5

    def test_state_without_rules(self, app, zipcodes):
        """Test a state no rule restricts comes back empty."""
        make_rule("Utah Kratom", "kratom", ["UT"], max_quantity_per_order=5)

        result = EligibilityAggregator().check_eligibility("73301")

        assert result.restricted_categories == []
        assert result.shipping_restrictions.is_empty
        assert result.as_dict()["shipping_restrictions"] == {}

    def test_minimum_quantity_wins(self, app, zipcodes):
        make_rule("Utah Kratom", "kratom", ["UT"], priority=60, max_quantity_per_order=5)
        make_rule("Utah Kratom Extracts", "kratom", ["UT"], priority=40, max_quantity_per_order=2,
                  carrier_restrictions=["USPS"])

        result = EligibilityAggregator().check_eligibility("84101")

        assert result.restricted_categories == ["kratom"]
        assert result.shipping_restrictions.max_quantity_per_order == 2
        assert result.shipping_restrictions.as_dict()["carrier_restrictions"] == ["USPS"]

    def test_unset_quantity_does_not_restrict(self, app, zipcodes):
        make_rule("Utah CBD", "cbd", ["UT"], requires_adult_signature=True)

        result = EligibilityAggregator().check_eligibility("84101")

        assert result.shipping_restrictions.max_quantity_per_order is None
        assert result.shipping_restrictions.as_dict() == {"requires_adult_signature": True}

    def test_new_rule_visible_immediately(self, app, seeded_rules, zipcodes):
        assert EligibilityAggregator().check_eligibility("10001").restricted_categories == []

        make_rule("New York Flavored Nicotine", "nicotine", ["NY"])

        assert EligibilityAggregator().check_eligibility("10001").restricted_categories == ["nicotine"]


class TestMergeAlgebra:

    @pytest.fixture
    def restrictions(self):
        return [
            ShippingRestrictions(carrier_restrictions=frozenset({"FedEx"}), max_quantity_per_order=10),
            ShippingRestrictions(carrier_restrictions=frozenset({"UPS", "FedEx"}), requires_adult_signature=True),
            ShippingRestrictions(max_quantity_per_order=3, no_international_shipping=True),
            None,
        ]

    def test_order_independent(self, restrictions):
        results = {merge_shipping_restrictions(p) for p in itertools.permutations(restrictions)}
        assert len(results) == 1

        merged = results.pop()
        assert merged.carrier_restrictions == frozenset({"FedEx", "UPS"})
        assert merged.requires_adult_signature is True
        assert merged.max_quantity_per_order == 3
        assert merged.no_international_shipping is True

    def test_associative(self, restrictions):
        a, b, c = (MergedShippingRestrictions.from_rule(r) for r in restrictions[:3])
        assert a.merge(b).merge(c) == a.merge(b.merge(c))

    def test_identity(self, restrictions):
        a = MergedShippingRestrictions.from_rule(restrictions[0])
        assert a.merge(MergedShippingRestrictions()) == a
        assert merge_shipping_restrictions([]).is_empty
