"""
Keyword Rule Engine - Deterministic Product Classification

No LLM and no I/O. Given the catalog's rule snapshots and a product's text,
decides which rules fire.

Algorithm:
1. Rules are sorted by priority (descending) once at construction. The sort
   is stable, so equal priorities keep catalog declaration order.
2. A rule fires if ANY of its keywords is a case-insensitive substring of
   "name description".
3. All fired rules are returned in priority order. The first one decides
   action and category.
4. should_hide is True iff a fired rule's action is hide or restrict.
5. confidence = mean(priority / 100) over fired rules, clamped to [0, 1].

Used as a fast classifier and as the pre-filter in front of the AI path.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Sequence

from app.services.rule_catalog import RuleSnapshot
from app.web.db.models import Category, RuleAction

HIDING_ACTIONS = frozenset({RuleAction.HIDE.value, RuleAction.RESTRICT.value})


@dataclass
class KeywordEvaluation:
    """Result of evaluating a product's text against the keyword rules."""
    triggered_rules: List[RuleSnapshot] = field(default_factory=list)
    action: Optional[str] = None
    category: Optional[str] = None
    should_hide: bool = False
    confidence: float = 0.0

    @property
    def top_priority(self) -> Optional[int]:
        return self.triggered_rules[0].priority if self.triggered_rules else None

    @property
    def categories(self) -> List[str]:
        """Distinct categories of fired rules, in priority order."""
        return list(dict.fromkeys(r.category for r in self.triggered_rules))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "triggered_rules": [r.as_dict() for r in self.triggered_rules],
            "action": self.action,
            "category": self.category,
            "should_hide": self.should_hide,
            "confidence": round(self.confidence, 4),
        }


class KeywordRuleEngine:
    """
    Evaluate product text against keyword rules.

    Usage:
        engine = KeywordRuleEngine(catalog.rules())
        result = engine.evaluate("Premium Nicotine Vape Pen")
        result.category      # "nicotine"
        result.should_hide   # True
    """

    def __init__(self, rules: Sequence[RuleSnapshot]):
        self.source_rules = rules
        self._rules = sorted(rules, key=lambda r: -r.priority)
        self._keywords = [
            tuple(k.lower() for k in rule.keywords if k)
            for rule in self._rules
        ]

    @property
    def rules(self) -> List[RuleSnapshot]:
        return list(self._rules)

    def evaluate(self, product_name: str, product_description: Optional[str] = None) -> KeywordEvaluation:
        text = f"{product_name or ''} {product_description or ''}".lower()

        triggered = [
            rule for rule, keywords in zip(self._rules, self._keywords)
            if any(keyword in text for keyword in keywords)
        ]
        if not triggered:
            return KeywordEvaluation()

        confidence = sum(r.priority / 100 for r in triggered) / len(triggered)
        top = triggered[0]
        return KeywordEvaluation(
            triggered_rules=triggered,
            action=top.action,
            category=top.category,
            should_hide=any(r.action in HIDING_ACTIONS for r in triggered),
            confidence=min(1.0, max(0.0, confidence)),
        )

    def should_hide_product(self, product_name: str, product_description: Optional[str] = None) -> bool:
        return self.evaluate(product_name, product_description).should_hide

    def rules_by_category(self, category) -> List[RuleSnapshot]:
        category = Category(category).value
        return [r for r in self._rules if r.category == category]

    def rule_stats(self) -> Dict[str, Any]:
        return {
            "total_rules": len(self._rules),
            "by_category": dict(Counter(r.category for r in self._rules)),
            "by_action": dict(Counter(r.action for r in self._rules)),
        }
