"""
Destination Eligibility Aggregator

Answers "what can ship to this ZIP, and under which constraints" by folding
every compliance rule that restricts the ZIP's state into one result.

Algorithm:
1. ZIP must be exactly 5 digits after stripping (checked before any I/O)
2. ZIP -> state via the geographic store
3. Rules restricting that state, highest priority first
4. restricted_categories: rule categories, deduplicated in that order
5. Shipping restrictions merged field by field:
   - carrier_restrictions: union (emitted sorted)
   - requires_adult_signature: OR
   - max_quantity_per_order: min over rules that set it
   - no_international_shipping: OR

Each field merge is commutative and associative, so rule order never
changes the merged restrictions.
"""

import logging
import re
from dataclasses import dataclass, field
from functools import reduce
from typing import Optional, List, Dict, Any, FrozenSet, Iterable

from app.services.catalog_store import ZipcodeStore
from app.services.errors import InvalidZipError, ZipNotFoundError
from app.services.logging_utils import log_compliance_event
from app.services.rule_catalog import get_rule_catalog, ShippingRestrictions

logger = logging.getLogger(__name__)

ZIP_PATTERN = re.compile(r"^[0-9]{5}$")


@dataclass(frozen=True)
class MergedShippingRestrictions:
    """Identity element of the merge is the default instance."""
    carrier_restrictions: FrozenSet[str] = frozenset()
    requires_adult_signature: bool = False
    max_quantity_per_order: Optional[int] = None
    no_international_shipping: bool = False

    def merge(self, other: "MergedShippingRestrictions") -> "MergedShippingRestrictions":
        quantities = [q for q in (self.max_quantity_per_order, other.max_quantity_per_order) if q is not None]
        return MergedShippingRestrictions(
            carrier_restrictions=self.carrier_restrictions | other.carrier_restrictions,
            requires_adult_signature=self.requires_adult_signature or other.requires_adult_signature,
            max_quantity_per_order=min(quantities) if quantities else None,
            no_international_shipping=self.no_international_shipping or other.no_international_shipping,
        )

    @classmethod
    def from_rule(cls, restrictions: Optional[ShippingRestrictions]) -> "MergedShippingRestrictions":
        if restrictions is None:
            return cls()
        return cls(
            carrier_restrictions=frozenset(restrictions.carrier_restrictions),
            requires_adult_signature=restrictions.requires_adult_signature,
            max_quantity_per_order=restrictions.max_quantity_per_order,
            no_international_shipping=restrictions.no_international_shipping,
        )

    @property
    def is_empty(self) -> bool:
        return self == MergedShippingRestrictions()

    def as_dict(self) -> Dict[str, Any]:
        """Only the fields that restrict anything."""
        result: Dict[str, Any] = {}
        if self.carrier_restrictions:
            result["carrier_restrictions"] = sorted(self.carrier_restrictions)
        if self.requires_adult_signature:
            result["requires_adult_signature"] = True
        if self.max_quantity_per_order is not None:
            result["max_quantity_per_order"] = self.max_quantity_per_order
        if self.no_international_shipping:
            result["no_international_shipping"] = True
        return result


def merge_shipping_restrictions(
    restrictions: Iterable[Optional[ShippingRestrictions]],
) -> MergedShippingRestrictions:
    return reduce(
        lambda acc, r: acc.merge(MergedShippingRestrictions.from_rule(r)),
        restrictions,
        MergedShippingRestrictions(),
    )


@dataclass
class EligibilityResult:
    zip: str
    state: str
    city: Optional[str] = None
    county: Optional[str] = None
    restricted_categories: List[str] = field(default_factory=list)
    shipping_restrictions: MergedShippingRestrictions = field(default_factory=MergedShippingRestrictions)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "zip": self.zip,
            "state": self.state,
            "city": self.city,
            "county": self.county,
            "restricted_categories": self.restricted_categories,
            "shipping_restrictions": self.shipping_restrictions.as_dict(),
        }


def normalize_zip(zip_code: Optional[str]) -> str:
    value = (zip_code or "").strip()
    if not ZIP_PATTERN.match(value):
        raise InvalidZipError(f"Invalid ZIP code {zip_code!r}: expected exactly 5 digits")
    return value


class EligibilityAggregator:
    """
    Usage:
        result = EligibilityAggregator().check_eligibility("73301")
        result.state                  # "TX"
        result.restricted_categories  # ["thca"]
    """

    def __init__(self, zip_store: Optional[ZipcodeStore] = None, catalog=None):
        self.zip_store = zip_store or ZipcodeStore()
        self._catalog = catalog

    @property
    def catalog(self):
        return self._catalog or get_rule_catalog()

    def check_eligibility(self, zip_code: str) -> EligibilityResult:
        """
        Raises:
            InvalidZipError: not 5 digits (no lookup is made)
            ZipNotFoundError: unknown ZIP
            RuleLoadError: rules could not be loaded
        """
        zip_code = normalize_zip(zip_code)

        location = self.zip_store.resolve_zip(zip_code)
        if location is None:
            raise ZipNotFoundError(f"ZIP code {zip_code} not found")

        rules = self.catalog.rules_restricting_state(location.state)
        categories = list(dict.fromkeys(r.category for r in rules))
        merged = merge_shipping_restrictions(r.shipping_restrictions for r in rules)

        result = EligibilityResult(
            zip=location.zip,
            state=location.state,
            city=location.city,
            county=location.county,
            restricted_categories=categories,
            shipping_restrictions=merged,
        )

        log_compliance_event("eligibility_checked", {
            "zip": zip_code,
            "state": location.state,
            "rules": len(rules),
            "restricted_categories": categories,
        })
        return result


_aggregator: Optional[EligibilityAggregator] = None


def get_eligibility_aggregator() -> EligibilityAggregator:
    global _aggregator
    if _aggregator is None:
        _aggregator = EligibilityAggregator()
    return _aggregator


def check_eligibility(zip_code: str) -> EligibilityResult:
    """Convenience wrapper around the singleton aggregator."""
    return get_eligibility_aggregator().check_eligibility(zip_code)
