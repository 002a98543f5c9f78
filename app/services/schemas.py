"""
Pydantic schemas for the compliance boundary.

Two kinds of schemas live here:
- Completion-service responses (classification, COA extraction). The
  classification schema uses strict mode so "yes" never becomes True and an
  unknown category is rejected instead of guessed.
- Admin/API request payloads (rule create/update, assign, resolve, ...).

parse_payload() converts pydantic's ValidationError into the compliance
ValidationError so views can answer 400 with a readable message.
"""

import math
from datetime import date
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.services.errors import ValidationError
from app.web.db.models import Category, RuleAction

T = TypeVar("T", bound=BaseModel)

CategoryLiteral = Literal["thca", "kratom", "7-hydroxy", "nicotine", "tobacco", "cbd", "other"]
ContaminantStatus = Literal["pass", "fail", "not_tested"]


def parse_payload(model: Type[T], data: Optional[Dict[str, Any]]) -> T:
    """Validate a request payload, raising the compliance ValidationError."""
    try:
        return model.model_validate(data or {})
    except pydantic.ValidationError as e:
        raise ValidationError(_summarize(e)) from e


def _summarize(error: pydantic.ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "payload"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


# ============================================================================
# Completion-service responses
# ============================================================================

class ClassificationResponse(BaseModel):
    """
    Expected structure from the completion service:
    {
        "categories": ["thca"],
        "nicotine_product": false,
        "requires_lab_test": true,
        "hidden_reason": null
    }
    """
    model_config = ConfigDict(strict=True)

    categories: List[CategoryLiteral] = Field(min_length=1)
    nicotine_product: bool
    requires_lab_test: bool
    hidden_reason: Optional[str] = None


class ContaminantResults(BaseModel):
    pesticides: ContaminantStatus = "not_tested"
    heavy_metals: ContaminantStatus = "not_tested"
    microbials: ContaminantStatus = "not_tested"
    residual_solvents: ContaminantStatus = "not_tested"

    @field_validator("pesticides", "heavy_metals", "microbials", "residual_solvents", mode="before")
    @classmethod
    def normalize_status(cls, value):
        # "Pass", "FAIL", "Not Tested"
        if isinstance(value, str):
            return value.strip().lower().replace(" ", "_").replace("-", "_")
        return value


class COAExtractionResponse(BaseModel):
    """
    Structured data pulled out of a Certificate of Analysis.

    Missing values are None. Blank strings are normalized to None here so a
    downstream "missing" check never has to consider "".
    """
    batch_number: Optional[str] = None
    potency: Optional[Dict[str, Optional[float]]] = None
    tested_at: Optional[date] = None
    lab_name: Optional[str] = None
    expiration_date: Optional[date] = None
    contaminant_results: Optional[ContaminantResults] = None
    is_valid: bool = Field(default=False, strict=True)
    validation_errors: List[str] = Field(default_factory=list)

    @field_validator("batch_number", "lab_name", "tested_at", "expiration_date", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return value

    @field_validator("tested_at", "expiration_date", mode="before")
    @classmethod
    def date_part_only(cls, value):
        # "2024-03-01T00:00:00Z" -> "2024-03-01"
        if isinstance(value, str) and len(value) > 10 and value[10] in "T ":
            return value[:10]
        return value

    @field_validator("potency", mode="before")
    @classmethod
    def numeric_potency(cls, value):
        # Below-detection readings come back as text ("ND", "<LOQ") and are dropped
        if not isinstance(value, dict):
            return value
        readings = {}
        for analyte, reading in value.items():
            if isinstance(reading, str):
                try:
                    reading = float(reading.strip().rstrip("%"))
                except ValueError:
                    continue
            if reading is not None and (isinstance(reading, bool) or not isinstance(reading, (int, float))):
                continue
            if reading is not None and not math.isfinite(reading):
                continue
            readings[analyte] = reading
        return readings

    @field_validator("potency")
    @classmethod
    def drop_missing_potency(cls, value):
        if value is None:
            return None
        reported = {k: v for k, v in value.items() if v is not None}
        return reported or None

    @classmethod
    def failed(cls, reason: str = "AI extraction failed") -> "COAExtractionResponse":
        return cls(is_valid=False, validation_errors=[reason])


# ============================================================================
# Rule payloads
# ============================================================================

class ShippingRestrictionsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    carrier_restrictions: List[str] = Field(default_factory=list)
    requires_adult_signature: bool = False
    max_quantity_per_order: Optional[int] = Field(default=None, ge=1)
    no_international_shipping: bool = False


def _normalize_category(value):
    if isinstance(value, Category):
        return value
    try:
        return Category(value)
    except ValueError:
        allowed = ", ".join(c.value for c in Category)
        raise ValueError(f"unknown category {value!r} (expected one of: {allowed})")


def _normalize_states(states: List[str]) -> List[str]:
    normalized = []
    for state in states:
        code = state.strip().upper()
        if len(code) != 2 or not code.isalpha():
            raise ValueError(f"invalid state code {state!r}")
        if code not in normalized:
            normalized.append(code)
    return normalized


class ComplianceRuleCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: Category
    substance_type: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    action: RuleAction = RuleAction.FLAG
    priority: int = Field(default=0, ge=0, le=1000)
    restricted_states: List[str] = Field(default_factory=list)
    age_requirement: Optional[int] = Field(default=None, ge=0, le=120)
    shipping_restrictions: Optional[ShippingRestrictionsPayload] = None
    lab_testing_required: bool = False
    batch_tracking_required: bool = False
    warning_labels: List[str] = Field(default_factory=list)

    @field_validator("category", mode="before")
    @classmethod
    def check_category(cls, value):
        return _normalize_category(value)

    @field_validator("restricted_states")
    @classmethod
    def check_states(cls, value):
        return _normalize_states(value)

    @field_validator("keywords")
    @classmethod
    def clean_keywords(cls, value):
        return [k.strip() for k in value if k and k.strip()]


class ComplianceRuleUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[Category] = None
    substance_type: Optional[str] = None
    keywords: Optional[List[str]] = None
    action: Optional[RuleAction] = None
    priority: Optional[int] = Field(default=None, ge=0, le=1000)
    restricted_states: Optional[List[str]] = None
    age_requirement: Optional[int] = Field(default=None, ge=0, le=120)
    shipping_restrictions: Optional[ShippingRestrictionsPayload] = None
    lab_testing_required: Optional[bool] = None
    batch_tracking_required: Optional[bool] = None
    warning_labels: Optional[List[str]] = None

    @field_validator("category", mode="before")
    @classmethod
    def check_category(cls, value):
        if value is None:
            return value
        return _normalize_category(value)

    @field_validator("restricted_states")
    @classmethod
    def check_states(cls, value):
        if value is None:
            return value
        return _normalize_states(value)

    @field_validator("keywords")
    @classmethod
    def clean_keywords(cls, value):
        if value is None:
            return value
        return [k.strip() for k in value if k and k.strip()]

    @model_validator(mode="after")
    def reject_null_required(self):
        # Only these columns may be cleared with an explicit null
        nullable = {"description", "substance_type", "age_requirement", "shipping_restrictions"}
        cleared = sorted(
            field for field in self.model_fields_set
            if field not in nullable and getattr(self, field) is None
        )
        if cleared:
            raise ValueError(f"fields cannot be null: {', '.join(cleared)}")
        return self


# ============================================================================
# Request bodies
# ============================================================================

class AnalyzeRequest(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None


class ClassifyProductRequest(BaseModel):
    product_id: str = Field(min_length=1)
    force_ai: bool = False


class BulkClassifyRequest(BaseModel):
    product_ids: Optional[List[str]] = None
    limit: int = Field(default=100, ge=1, le=1000)


class AssignCategoryRequest(BaseModel):
    category: Category
    substance_type: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def check_category(cls, value):
        return _normalize_category(value)


class ResolveViolationRequest(BaseModel):
    resolved_by: str = Field(min_length=1, max_length=100)
    notes: Optional[str] = None


class ResetVisibilityRequest(BaseModel):
    reset_by: str = Field(min_length=1, max_length=100)
    notes: Optional[str] = None
