"""
AI Product Classifier

Assigns regulatory categories to a product, links it to the matching
compliance rules and patches its flags and visibility.

Flow for one product:
1. Keyword pre-filter. If the top triggered rule's priority is at least
   KEYWORD_FAST_PATH_PRIORITY (and force_ai is off), the keyword result is
   used and the completion service is not called.
2. Otherwise the completion service classifies name + description. The
   response is validated with a strict schema; anything that does not
   conform fails the classification.
3. Associations are created for every catalog rule in the returned
   categories; associations for categories no longer returned are removed.
4. The product is patched (flags, classification record, visibility).

bulk_classify() runs this over many products, throttled and cancellable.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable

import pydantic
from flask import current_app, has_app_context

from app.services import visibility
from app.services.catalog_store import CatalogStore
from app.services.completion_client import get_completion_client
from app.services.errors import (
    ClassificationError,
    CompletionTimeoutError,
    ExternalServiceError,
)
from app.services.keyword_rules import KeywordEvaluation
from app.services.logging_utils import log_compliance_event, ComplianceRunLogger
from app.services.rule_catalog import get_rule_catalog
from app.services.schemas import ClassificationResponse
from app.web.db import db
from app.web.db.models import Category, RuleAction

logger = logging.getLogger(__name__)

DEFAULT_FAST_PATH_PRIORITY = 100
DEFAULT_PAUSE_EVERY = 10
DEFAULT_PAUSE_SECONDS = 1.0

NICOTINE_CATEGORIES = frozenset({Category.NICOTINE.value, Category.TOBACCO.value})

CLASSIFICATION_SYSTEM_PROMPT = """You are a compliance classifier for a retailer of age-restricted products (nicotine, hemp cannabinoids, kratom, glass and accessories).

Classify the product described by the user into regulatory categories.

Return ONLY a JSON object with exactly these keys:
{
  "categories": ["thca" | "kratom" | "7-hydroxy" | "nicotine" | "tobacco" | "cbd" | "other"],
  "nicotine_product": true | false,
  "requires_lab_test": true | false,
  "hidden_reason": string | null
}

Rules:
- "categories" must contain at least one value. Use "other" when nothing else applies.
- THCA flower, pre-rolls, concentrates and other hemp cannabinoids -> "thca", requires_lab_test true.
- CBD products -> "cbd".
- Kratom or mitragyna speciosa leaf, powder, capsules or extracts -> "kratom", requires_lab_test true.
- 7-hydroxymitragynine (7-OH) products -> "7-hydroxy", requires_lab_test true.
- Nicotine pouches, e-liquids, disposable vapes and vaping devices -> "nicotine", nicotine_product true.
- Cigarettes, cigars, pipe or chewing tobacco, snuff -> "tobacco" and "nicotine", nicotine_product true.
- When nicotine_product is true set hidden_reason to "Nicotine products restricted to tobacco site", otherwise null.
- Booleans must be JSON true/false, never strings."""


@dataclass
class ClassificationResult:
    """Outcome of classifying one product."""
    product_id: str
    categories: List[str]
    nicotine_product: bool
    tobacco_product: bool
    requires_lab_test: bool
    hidden_reason: Optional[str] = None
    source: str = "ai"  # keyword, ai
    visible_on_main_site: bool = True
    associated_rule_ids: List[str] = field(default_factory=list)
    removed_rule_ids: List[str] = field(default_factory=list)
    keyword_evaluation: Optional[KeywordEvaluation] = None

    @property
    def is_restricted(self) -> bool:
        """True if anything other than "other" was assigned."""
        return any(c != Category.OTHER.value for c in self.categories)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "categories": self.categories,
            "nicotine_product": self.nicotine_product,
            "tobacco_product": self.tobacco_product,
            "requires_lab_test": self.requires_lab_test,
            "hidden_reason": self.hidden_reason,
            "source": self.source,
            "visible_on_main_site": self.visible_on_main_site,
            "associated_rule_ids": self.associated_rule_ids,
            "removed_rule_ids": self.removed_rule_ids,
            "keyword_evaluation": self.keyword_evaluation.as_dict() if self.keyword_evaluation else None,
        }


@dataclass
class BulkClassificationSummary:
    total: int = 0
    processed: int = 0
    classified: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
    cancelled: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "classified": self.classified,
            "errors": self.errors,
            "error_messages": self.error_messages,
            "cancelled": self.cancelled,
        }


def _setting(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


class AIClassifier:
    """
    Usage:
        classifier = AIClassifier()
        result = classifier.classify_product(product_id)
        summary = classifier.bulk_classify(limit=50)
    """

    def __init__(self, store: Optional[CatalogStore] = None, completion_client=None, catalog=None):
        self.store = store or CatalogStore()
        self._completion_client = completion_client
        self._catalog = catalog

    @property
    def completion_client(self):
        return self._completion_client or get_completion_client()

    @property
    def catalog(self):
        return self._catalog or get_rule_catalog()

    # -------------------------------------------------------------------------
    # Single product
    # -------------------------------------------------------------------------

    def classify_product(self, product_id: str, force_ai: bool = False) -> ClassificationResult:
        """
        Classify a product and persist the result.

        Raises:
            ProductNotFoundError: unknown product
            ClassificationError: completion failed or returned a bad response
            CompletionTimeoutError: completion timed out twice
        """
        product = self.store.require_product(product_id)

        evaluation = self.catalog.keyword_engine().evaluate(product.name, product.description)
        threshold = int(_setting("KEYWORD_FAST_PATH_PRIORITY", DEFAULT_FAST_PATH_PRIORITY))

        if not force_ai and evaluation.triggered_rules and evaluation.top_priority >= threshold:
            response = self._response_from_keywords(evaluation)
            source = "keyword"
            logger.info(
                f"Keyword fast path for {product_id}: {evaluation.category} "
                f"(priority {evaluation.top_priority})"
            )
        else:
            response = self.classify_text(product.name, product.description)
            source = "ai"

        result = self._apply(product, response, source, evaluation)

        log_compliance_event("product_classified", {
            "product_id": product_id,
            "source": source,
            "categories": result.categories,
            "nicotine_product": result.nicotine_product,
            "associated": len(result.associated_rule_ids),
            "removed": len(result.removed_rule_ids),
            "visible_on_main_site": result.visible_on_main_site,
        })
        return result

    def classify_text(self, name: str, description: Optional[str] = None) -> ClassificationResponse:
        """Ask the completion service to classify product text (no persistence)."""
        user_content = f"Product name: {name}\nDescription: {description or 'N/A'}"

        try:
            raw = self.completion_client.complete_json(CLASSIFICATION_SYSTEM_PROMPT, user_content)
        except CompletionTimeoutError:
            raise
        except ExternalServiceError as e:
            raise ClassificationError(f"Classification request failed: {e}") from e

        try:
            return ClassificationResponse.model_validate_json(raw)
        except pydantic.ValidationError as e:
            logger.warning(f"Non-conforming classification response: {raw[:200]}")
            raise ClassificationError(
                f"Classification response did not match the expected schema: "
                f"{e.error_count()} error(s)"
            ) from e

    def _response_from_keywords(self, evaluation: KeywordEvaluation) -> ClassificationResponse:
        categories = evaluation.categories
        nicotine = any(c in NICOTINE_CATEGORIES for c in categories)
        return ClassificationResponse(
            categories=categories,
            nicotine_product=nicotine,
            requires_lab_test=any(r.lab_testing_required for r in evaluation.triggered_rules),
            hidden_reason=visibility.DEFAULT_NICOTINE_HIDDEN_REASON if nicotine else None,
        )

    def _apply(
        self,
        product,
        response: ClassificationResponse,
        source: str,
        evaluation: KeywordEvaluation,
    ) -> ClassificationResult:
        categories = list(dict.fromkeys(response.categories))
        rules = self.catalog.rules_for_categories(categories)

        associated = []
        for rule in rules:
            self.store.create_product_compliance(product.id, rule.id)
            associated.append(rule.id)

        # Keep associations a subset of the latest categories
        removed = []
        for link in self.store.get_product_compliance(product.id):
            if link.rule.category not in categories:
                removed.append(link.compliance_rule_id)
        for rule_id in removed:
            self.store.delete_product_compliance(product.id, rule_id)

        hide_rule = next(
            (r for r in evaluation.triggered_rules if r.action == RuleAction.HIDE.value), None
        )

        patch = {
            "nicotine_product": response.nicotine_product,
            "tobacco_product": Category.TOBACCO.value in categories,
            # a lab report on file satisfies it
            "requires_lab_test": response.requires_lab_test and not product.lab_test_url,
            "classified_categories": categories,
            "classified_at": datetime.utcnow(),
            "classification_source": source,
        }
        patch.update(visibility.classification_patch(
            product,
            nicotine_product=response.nicotine_product,
            hidden_reason=response.hidden_reason,
            hide_rule_name=hide_rule.name if hide_rule else None,
        ))
        product = self.store.update_product(product.id, patch)

        return ClassificationResult(
            product_id=product.id,
            categories=categories,
            nicotine_product=product.nicotine_product,
            tobacco_product=product.tobacco_product,
            requires_lab_test=product.requires_lab_test,
            hidden_reason=product.hidden_reason,
            source=source,
            visible_on_main_site=product.visible_on_main_site,
            associated_rule_ids=associated,
            removed_rule_ids=removed,
            keyword_evaluation=evaluation,
        )

    # -------------------------------------------------------------------------
    # Bulk
    # -------------------------------------------------------------------------

    def bulk_classify(
        self,
        product_ids: Optional[Iterable[str]] = None,
        limit: int = 100,
        cancel_event: Optional[threading.Event] = None,
    ) -> BulkClassificationSummary:
        """
        Classify many products. One product's failure never stops the batch.

        Args:
            product_ids: Explicit IDs; defaults to the first `limit` active products
            limit: Candidate cap when product_ids is not given
            cancel_event: Set to stop between products; partial counts are kept
        """
        cancel_event = cancel_event or threading.Event()
        pause_every = int(_setting("BULK_CLASSIFY_PAUSE_EVERY", DEFAULT_PAUSE_EVERY))
        pause_seconds = float(_setting("BULK_CLASSIFY_PAUSE_SECONDS", DEFAULT_PAUSE_SECONDS))

        if product_ids is not None:
            candidates = list(product_ids)
        else:
            candidates = [p.id for p in self.store.list_products(limit=limit)]

        summary = BulkClassificationSummary(total=len(candidates))

        with ComplianceRunLogger("bulk_classify", total=len(candidates)) as run:
            for index, product_id in enumerate(candidates, start=1):
                if cancel_event.is_set():
                    logger.info(f"Bulk classification cancelled after {index - 1} products")
                    summary.cancelled = True
                    break

                try:
                    result = self.classify_product(product_id)
                except Exception as e:
                    db.session.rollback()
                    logger.error(f"Failed to classify {product_id}: {e}")
                    summary.errors += 1
                    summary.error_messages.append(f"{product_id}: {e}")
                    run.log_item("classification_failed", {"product_id": product_id, "error": str(e)})
                else:
                    summary.processed += 1
                    if result.is_restricted:
                        summary.classified += 1

                # Throttle; a cancel wakes the pause early
                if pause_every > 0 and pause_seconds > 0 and index % pause_every == 0 \
                        and index < len(candidates):
                    cancel_event.wait(pause_seconds)

        logger.info(
            f"Bulk classification: {summary.processed}/{summary.total} processed, "
            f"{summary.classified} classified, {summary.errors} errors"
        )
        return summary


_classifier: Optional[AIClassifier] = None


def get_ai_classifier() -> AIClassifier:
    """Get the singleton classifier instance."""
    global _classifier
    if _classifier is None:
        _classifier = AIClassifier()
    return _classifier
