"""
Unit tests for boundary schemas.

Tests:
- Strict classification response validation
- COA extraction normalization
- Request payload parsing
"""

from datetime import date

import pydantic
import pytest

from app.services.errors import ValidationError
from app.services.schemas import (
    AssignCategoryRequest,
    BulkClassifyRequest,
    ClassificationResponse,
    COAExtractionResponse,
    ComplianceRuleCreate,
    ComplianceRuleUpdate,
    parse_payload,
)
from app.web.db.models import Category, RuleAction


class TestClassificationResponse:
    """Test the completion response schema."""

    def test_valid(self):
        response = ClassificationResponse.model_validate_json(
            '{"categories": ["thca", "cbd"], "nicotine_product": false,'
            ' "requires_lab_test": true, "hidden_reason": null}'
        )
        assert response.categories == ["thca", "cbd"]
        assert response.requires_lab_test is True

    def test_hidden_reason_optional(self):
        response = ClassificationResponse.model_validate_json(
            '{"categories": ["other"], "nicotine_product": false, "requires_lab_test": false}'
        )
        assert response.hidden_reason is None

    @pytest.mark.parametrize("body", [
        '{"categories": ["thca"], "nicotine_product": "false", "requires_lab_test": true}',
        '{"categories": ["thca"], "nicotine_product": 0, "requires_lab_test": true}',
        '{"categories": ["THCA"], "nicotine_product": false, "requires_lab_test": true}',
        '{"categories": "thca", "nicotine_product": false, "requires_lab_test": true}',
        '{"categories": [], "nicotine_product": false, "requires_lab_test": true}',
    ])
    def test_rejects_loose_values(self, body):
        """Test nothing is coerced or guessed."""
        with pytest.raises(pydantic.ValidationError):
            ClassificationResponse.model_validate_json(body)


class TestCOAExtractionResponse:
    """Test COA extraction normalization."""

    def test_blank_strings_become_none(self):
        extraction = COAExtractionResponse.model_validate({"batch_number": "  ", "lab_name": ""})
        assert extraction.batch_number is None
        assert extraction.lab_name is None

    def test_timestamp_trimmed_to_date(self):
        extraction = COAExtractionResponse.model_validate({"tested_at": "2024-03-01T00:00:00Z"})
        assert extraction.tested_at == date(2024, 3, 1)

    def test_null_potency_entries_dropped(self):
        extraction = COAExtractionResponse.model_validate({"potency": {"thca": 24.1, "cbd": None}})
        assert extraction.potency == {"thca": 24.1}

        extraction = COAExtractionResponse.model_validate({"potency": {"cbd": None}})
        assert extraction.potency is None

    def test_unreadable_potency_dropped(self):
        """Test below-detection readings do not reject the whole extraction."""
        extraction = COAExtractionResponse.model_validate({
            "potency": {"thca": 24.1, "delta9": "ND", "cbd": "<LOQ", "cbg": "0.8%"},
            "lab_name": "Canna Labs",
            "is_valid": True,
        })
        assert extraction.potency == {"thca": 24.1, "cbg": 0.8}
        assert extraction.lab_name == "Canna Labs"
        assert extraction.is_valid is True

        assert COAExtractionResponse.model_validate({"potency": {"delta9": "ND"}}).potency is None

    def test_contaminant_status_case_insensitive(self):
        extraction = COAExtractionResponse.model_validate({
            "contaminant_results": {"pesticides": "Pass", "heavy_metals": "FAIL", "microbials": "Not Tested"},
        })
        assert extraction.contaminant_results.pesticides == "pass"
        assert extraction.contaminant_results.heavy_metals == "fail"
        assert extraction.contaminant_results.microbials == "not_tested"

    def test_contaminant_defaults(self):
        extraction = COAExtractionResponse.model_validate({"contaminant_results": {"pesticides": "pass"}})
        assert extraction.contaminant_results.heavy_metals == "not_tested"

    def test_failed(self):
        failed = COAExtractionResponse.failed()
        assert failed.is_valid is False
        assert failed.validation_errors == ["AI extraction failed"]
        assert failed.batch_number is None


class TestParsePayload:
    """Test request payload parsing."""

    def test_rule_defaults(self):
        payload = parse_payload(ComplianceRuleCreate, {"name": "Kava", "category": "other"})
        assert payload.action == RuleAction.FLAG
        assert payload.priority == 0
        assert payload.restricted_states == []

    def test_keywords_cleaned(self):
        payload = parse_payload(ComplianceRuleCreate, {
            "name": "Kava", "category": "other", "keywords": [" kava ", "", "  "],
        })
        assert payload.keywords == ["kava"]

    def test_error_message_names_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload(ComplianceRuleCreate, {"name": "Kava", "category": "other", "priority": -1})
        assert "priority" in str(exc_info.value)

    def test_none_payload(self):
        assert parse_payload(BulkClassifyRequest, None).limit == 100

    def test_category_alias(self):
        assert parse_payload(AssignCategoryRequest, {"category": "7-OH"}).category == Category.SEVEN_HYDROXY

    @pytest.mark.parametrize("field", [
        "name", "category", "keywords", "action", "priority", "restricted_states",
        "lab_testing_required", "batch_tracking_required", "warning_labels",
    ])
    def test_update_rejects_null_for_required_columns(self, field):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload(ComplianceRuleUpdate, {field: None})
        assert field in str(exc_info.value)

    def test_update_allows_clearing_optional_columns(self):
        payload = parse_payload(ComplianceRuleUpdate, {
            "description": None, "substance_type": None,
            "age_requirement": None, "shipping_restrictions": None,
        })
        assert payload.model_dump(exclude_unset=True) == {
            "description": None, "substance_type": None,
            "age_requirement": None, "shipping_restrictions": None,
        }

    def test_update_keywords_cleaned(self):
        payload = parse_payload(ComplianceRuleUpdate, {"keywords": [" kava ", ""]})
        assert payload.keywords == ["kava"]
