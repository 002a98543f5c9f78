"""
Compliance Rule Catalog

Read side of the compliance_rules table for the classification and
eligibility services.

- DEFAULT_RULES: seed data, loaded by initialize_default_rules() and
  scripts/init_compliance.py. Never consulted at evaluation time.
- RuleSnapshot: frozen copy of a ComplianceRule row. Engines only ever see
  snapshots, so a rule edited mid-evaluation cannot change the answer.
- RuleCatalog: per-application cache of the snapshot list. Rebuilt under a
  lock and replaced as a whole; invalidated on rule create/update/seed.

Usage:
    catalog = get_rule_catalog()
    engine = catalog.keyword_engine()
    tx_rules = catalog.rules_restricting_state("TX")
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Iterable, Tuple, FrozenSet

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from app.services.errors import RuleLoadError
from app.web.db.models import Category, RuleAction

logger = logging.getLogger(__name__)


# =============================================================================
# Seed Data
# =============================================================================

_FDA_NOTICE = "This product has not been evaluated by the FDA"
_KEEP_AWAY = "Keep out of reach of children and pets"

_NICOTINE_WARNINGS = [
    "WARNING: This product contains nicotine",
    "Nicotine is an addictive chemical",
    _KEEP_AWAY,
    "For adult use only (21+)",
]

_NICOTINE_SHIPPING = {
    "carrier_restrictions": [],
    "requires_adult_signature": True,
    "max_quantity_per_order": None,
    "no_international_shipping": True,
}

_KRATOM_STATES = ["AL", "AR", "IN", "RI", "VT", "WI"]

# Declaration order is catalog order (seq); it breaks priority ties.
DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "id": "nicotine_obvious",
        "name": "Nicotine Products (Obvious)",
        "description": "Products that clearly contain nicotine",
        "category": Category.NICOTINE.value,
        "substance_type": "Tobacco/Nicotine Products",
        "keywords": ["nicotine", "nic pouch", "nic salt", "zyn", "velo", "rogue", "on!", "pouches"],
        "action": RuleAction.HIDE.value,
        "priority": 100,
        "restricted_states": [],
        "age_requirement": 21,
        "shipping_restrictions": _NICOTINE_SHIPPING,
        "lab_testing_required": False,
        "batch_tracking_required": False,
        "warning_labels": _NICOTINE_WARNINGS,
    },
    {
        "id": "tobacco_obvious",
        "name": "Tobacco Products (Obvious)",
        "description": "Traditional tobacco products",
        "category": Category.TOBACCO.value,
        "substance_type": "Tobacco/Nicotine Products",
        "keywords": ["tobacco", "cigarette", "cigar", "pipe tobacco", "chewing tobacco", "snuff"],
        "action": RuleAction.HIDE.value,
        "priority": 100,
        "restricted_states": [],
        "age_requirement": 21,
        "shipping_restrictions": _NICOTINE_SHIPPING,
        "lab_testing_required": False,
        "batch_tracking_required": False,
        "warning_labels": [
            "WARNING: This product contains tobacco",
            "Tobacco products cause cancer and are addictive",
            _KEEP_AWAY,
            "For adult use only (21+)",
        ],
    },
    {
        "id": "thca_products",
        "name": "THCA Products",
        "description": "THCA flower and derivatives (Delta-9 THC precursor)",
        "category": Category.THCA.value,
        "substance_type": "Delta-9 THC Precursor",
        "keywords": ["thca", "thc-a", "delta-9 thca", "hemp flower", "pre-roll"],
        "action": RuleAction.REQUIRE_VERIFICATION.value,
        "priority": 95,
        "restricted_states": ["ID", "KS", "NE", "NC", "SC", "TN", "TX", "UT", "WY"],
        "age_requirement": 21,
        "shipping_restrictions": {
            "carrier_restrictions": ["FedEx", "UPS"],
            "requires_adult_signature": True,
            "max_quantity_per_order": 10,
            "no_international_shipping": True,
        },
        "lab_testing_required": True,
        "batch_tracking_required": True,
        "warning_labels": [
            _FDA_NOTICE,
            "This product may convert to Delta-9 THC when heated",
            _KEEP_AWAY,
            "Do not drive or operate machinery after use",
            "For adult use only (21+)",
        ],
    },
    {
        "id": "vaping_devices",
        "name": "Vaping Devices",
        "description": "Electronic cigarettes and vaping hardware",
        "category": Category.NICOTINE.value,
        "substance_type": "Electronic Nicotine Delivery Systems",
        "keywords": ["e-cigarette", "e-cig", "vape pen", "mod", "tank", "coil", "cartridge"],
        "action": RuleAction.RESTRICT.value,
        "priority": 90,
        "restricted_states": [],
        "age_requirement": 21,
        "shipping_restrictions": _NICOTINE_SHIPPING,
        "lab_testing_required": False,
        "batch_tracking_required": False,
        "warning_labels": _NICOTINE_WARNINGS,
    },
    {
        "id": "seven_hydroxy_products",
        "name": "7-Hydroxymitragynine Products",
        "description": "Concentrated 7-OH kratom alkaloid products",
        "category": Category.SEVEN_HYDROXY.value,
        "substance_type": "7-Hydroxymitragynine",
        "keywords": ["7-hydroxy", "7-oh", "7oh", "hydroxymitragynine"],
        "action": RuleAction.RESTRICT.value,
        "priority": 88,
        "restricted_states": _KRATOM_STATES + ["TN"],
        "age_requirement": 21,
        "shipping_restrictions": {
            "carrier_restrictions": [],
            "requires_adult_signature": True,
            "max_quantity_per_order": 5,
            "no_international_shipping": True,
        },
        "lab_testing_required": True,
        "batch_tracking_required": True,
        "warning_labels": [
            _FDA_NOTICE,
            "Extremely potent - use with caution",
            "Not for human consumption",
            _KEEP_AWAY,
            "For research purposes only",
        ],
    },
    {
        "id": "kratom_products",
        "name": "Kratom Products",
        "description": "Kratom leaf, powder and extracts",
        "category": Category.KRATOM.value,
        "substance_type": "Mitragyna speciosa",
        "keywords": ["kratom", "mitragyna", "bali", "maeng da", "red vein", "white vein", "green vein"],
        "action": RuleAction.RESTRICT.value,
        "priority": 85,
        "restricted_states": list(_KRATOM_STATES),
        "age_requirement": 18,
        "shipping_restrictions": {
            "carrier_restrictions": [],
            "requires_adult_signature": True,
            "max_quantity_per_order": 50,
            "no_international_shipping": True,
        },
        "lab_testing_required": True,
        "batch_tracking_required": True,
        "warning_labels": [
            _FDA_NOTICE,
            "Not for human consumption",
            _KEEP_AWAY,
            "Consult your physician before use",
            "May cause drowsiness",
        ],
    },
    {
        "id": "cbd_products",
        "name": "CBD Products",
        "description": "Hemp-derived CBD products",
        "category": Category.CBD.value,
        "substance_type": "Cannabidiol",
        "keywords": ["cbd", "cannabidiol", "hemp oil", "hemp extract"],
        "action": RuleAction.FLAG.value,
        "priority": 50,
        "restricted_states": [],
        "age_requirement": None,
        "shipping_restrictions": None,
        "lab_testing_required": False,
        "batch_tracking_required": False,
        "warning_labels": [_FDA_NOTICE],
    },
]


def default_rule_for_category(category: str) -> Optional[Dict[str, Any]]:
    """First seed rule declared for a category, or None."""
    for rule in DEFAULT_RULES:
        if rule["category"] == category:
            return rule
    return None


# =============================================================================
# Snapshots
# =============================================================================

@dataclass(frozen=True)
class ShippingRestrictions:
    carrier_restrictions: FrozenSet[str] = frozenset()
    requires_adult_signature: bool = False
    max_quantity_per_order: Optional[int] = None
    no_international_shipping: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ShippingRestrictions"]:
        if not data:
            return None
        return cls(
            carrier_restrictions=frozenset(data.get("carrier_restrictions") or []),
            requires_adult_signature=bool(data.get("requires_adult_signature")),
            max_quantity_per_order=data.get("max_quantity_per_order"),
            no_international_shipping=bool(data.get("no_international_shipping")),
        )


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable view of a compliance rule."""
    id: str
    seq: int
    name: str
    category: str
    action: str
    priority: int
    keywords: Tuple[str, ...] = ()
    restricted_states: FrozenSet[str] = frozenset()
    age_requirement: Optional[int] = None
    shipping_restrictions: Optional[ShippingRestrictions] = None
    lab_testing_required: bool = False
    batch_tracking_required: bool = False
    warning_labels: Tuple[str, ...] = field(default=())

    @classmethod
    def from_model(cls, rule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            seq=rule.seq,
            name=rule.name,
            category=rule.category,
            action=rule.action,
            priority=rule.priority,
            keywords=tuple(rule.keywords or ()),
            restricted_states=frozenset(rule.restricted_states or ()),
            age_requirement=rule.age_requirement,
            shipping_restrictions=ShippingRestrictions.from_dict(rule.shipping_restrictions),
            lab_testing_required=bool(rule.lab_testing_required),
            batch_tracking_required=bool(rule.batch_tracking_required),
            warning_labels=tuple(rule.warning_labels or ()),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "action": self.action,
            "priority": self.priority,
        }


# =============================================================================
# Catalog Cache
# =============================================================================

class RuleCatalog:
    """
    Cached, ordered list of rule snapshots for one application.

    The list (and the keyword engine built from it) is swapped in as a whole,
    so readers never see a half-built catalog.
    """

    def __init__(self, store=None):
        self._store = store
        self._lock = threading.Lock()
        self._rules: Optional[Tuple[RuleSnapshot, ...]] = None
        self._engine = None

    @property
    def store(self):
        if self._store is None:
            from app.services.catalog_store import CatalogStore
            self._store = CatalogStore()
        return self._store

    def rules(self) -> Tuple[RuleSnapshot, ...]:
        """All rules in catalog (seq) order. Raises RuleLoadError on DB failure."""
        rules = self._rules
        if rules is not None:
            return rules

        with self._lock:
            if self._rules is None:
                try:
                    rows = self.store.get_all_compliance_rules()
                except SQLAlchemyError as e:
                    logger.error(f"Failed to load compliance rules: {e}")
                    raise RuleLoadError(f"Failed to load compliance rules: {e}") from e
                self._rules = tuple(RuleSnapshot.from_model(r) for r in rows)
                self._engine = None
                logger.info(f"Rule catalog loaded: {len(self._rules)} rules")
            return self._rules

    def invalidate(self) -> None:
        with self._lock:
            self._rules = None
            self._engine = None
        logger.debug("Rule catalog invalidated")

    def keyword_engine(self):
        """KeywordRuleEngine over the current snapshot list."""
        from app.services.keyword_rules import KeywordRuleEngine

        rules = self.rules()
        engine = self._engine
        if engine is None or engine.source_rules is not rules:
            engine = KeywordRuleEngine(rules)
            with self._lock:
                if self._rules is rules:
                    self._engine = engine
        return engine

    def get(self, rule_id: str) -> Optional[RuleSnapshot]:
        for rule in self.rules():
            if rule.id == rule_id:
                return rule
        return None

    def rules_for_categories(self, categories: Iterable[str]) -> List[RuleSnapshot]:
        wanted = set(categories)
        return [r for r in self.rules() if r.category in wanted]

    def rules_restricting_state(self, state: str) -> List[RuleSnapshot]:
        """Rules restricting a state, highest priority first (ties in catalog order)."""
        state = state.upper()
        matching = [r for r in self.rules() if state in r.restricted_states]
        return sorted(matching, key=lambda r: -r.priority)


def get_rule_catalog() -> RuleCatalog:
    """Rule catalog of the current Flask application."""
    catalog = current_app.extensions.get("rule_catalog")
    if catalog is None:
        catalog = current_app.extensions.setdefault("rule_catalog", RuleCatalog())
    return catalog


def invalidate_rule_catalog() -> None:
    if has_app_context() and "rule_catalog" in current_app.extensions:
        current_app.extensions["rule_catalog"].invalidate()


# =============================================================================
# Seeding
# =============================================================================

def initialize_default_rules(store=None) -> List[str]:
    """
    Insert any DEFAULT_RULES not yet present (matched by id).

    Returns:
        IDs of the rules created by this call
    """
    if store is None:
        from app.services.catalog_store import CatalogStore
        store = CatalogStore()

    created = []
    for rule_data in DEFAULT_RULES:
        if store.get_compliance_rule(rule_data["id"]) is not None:
            continue
        store.create_compliance_rule(dict(rule_data))
        created.append(rule_data["id"])
        logger.info(f"Initialized default rule {rule_data['id']} ({rule_data['category']})")

    invalidate_rule_catalog()
    return created
