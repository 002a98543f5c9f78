"""
Certificate of Analysis (COA) Ingestion

Turns an uploaded lab report into a LabCertificate and marks the product's
lab-test requirement as satisfied.

Pipeline:
1. Text layer via pdfplumber; if that fails, the raw bytes decoded as UTF-8
2. AI extraction over the first 4000 characters (never raises; a failure
   yields an all-null result with is_valid=False)
3. Regex fallback, used only for fields the AI left null
4. LabCertificate row (parsed_by_ai=True)
5. Product patch: lab_test_url, batch_number/expiration_date when found,
   requires_lab_test=False
"""

import io
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional, Dict, Any

import pdfplumber
import pydantic

from app.services.catalog_store import CatalogStore
from app.services.completion_client import get_completion_client
from app.services.errors import IngestionError, ExternalServiceError
from app.services.logging_utils import log_compliance_event
from app.services.schemas import COAExtractionResponse

logger = logging.getLogger(__name__)

MAX_AI_CHARS = 4000

COA_SYSTEM_PROMPT = """You are a cannabis and botanical lab testing expert. Extract key information from Certificate of Analysis (COA) documents.

Return ONLY a JSON object:
{
  "batch_number": string | null,
  "potency": {"delta9": number, "thca": number, "cbd": number, "cbg": number, "cbn": number} | null,
  "tested_at": string | null,
  "lab_name": string | null,
  "expiration_date": string | null,
  "contaminant_results": {
    "pesticides": "pass" | "fail" | "not_tested",
    "heavy_metals": "pass" | "fail" | "not_tested",
    "microbials": "pass" | "fail" | "not_tested",
    "residual_solvents": "pass" | "fail" | "not_tested"
  } | null,
  "is_valid": true | false,
  "validation_errors": [string]
}

Look for:
- Batch/Lot numbers
- Cannabinoid or alkaloid percentages (THC, THCA, CBD, ...)
- Test dates and expiration dates (ISO format YYYY-MM-DD)
- Lab/Laboratory names
- Pass/Fail results for contaminants
- Any validation issues or missing data

Return null for missing data, not empty strings."""

THCA_PATTERN = re.compile(r"THCA[:\s]+([\d.]+)", re.IGNORECASE)
BATCH_PATTERN = re.compile(
    r"\b(?:Batch|Lot)(?:\s*(?:No\b\.?|Number\b|ID\b)\s*[:#]?|\s*[:#])\s*([A-Za-z0-9][A-Za-z0-9-]*)",
    re.IGNORECASE,
)
DATE_PATTERN = re.compile(r"\b((?:19|20)\d{2})[-/](\d{2})[-/](\d{2})\b")
LAB_PATTERN = re.compile(r"(?:Laboratory|Lab)(?:\s+Name)?\s*:\s*([^\n]+)", re.IGNORECASE)


@dataclass
class COAIngestionResult:
    lab_certificate_id: str
    extracted_data: Dict[str, Any]
    text_length: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "lab_certificate_id": self.lab_certificate_id,
            "extracted_data": self.extracted_data,
            "text_length": self.text_length,
        }


def extract_text(raw: bytes) -> str:
    """PDF text layer, or the bytes decoded as UTF-8 when pdfplumber can't read them."""
    try:
        with pdfplumber.open(io.BytesIO(raw)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
        text = "\n".join(pages)
        logger.info(f"Extracted {len(text)} characters from {len(pages)} PDF pages")
        return text
    except Exception as e:
        logger.warning(f"PDF parsing failed, decoding raw bytes: {e}")
        return raw.decode("utf-8", errors="ignore")


def regex_extract(text: str) -> Dict[str, Any]:
    """Naive pattern extraction. Keys are only present when a pattern matched."""
    found: Dict[str, Any] = {}

    match = BATCH_PATTERN.search(text)
    if match:
        found["batch_number"] = match.group(1)

    match = THCA_PATTERN.search(text)
    if match:
        try:
            found["potency"] = {"thca": float(match.group(1).rstrip("."))}
        except ValueError:
            pass

    for match in DATE_PATTERN.finditer(text):
        try:
            found["tested_at"] = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            break
        except ValueError:
            continue

    match = LAB_PATTERN.search(text)
    if match and match.group(1).strip():
        found["lab_name"] = match.group(1).strip()

    return found


class COAParser:
    """
    Usage:
        parser = COAParser()
        result = parser.ingest_coa(product_id, file_bytes, "https://lab.example/coa/123.pdf")
    """

    def __init__(self, store: Optional[CatalogStore] = None, completion_client=None):
        self.store = store or CatalogStore()
        self._completion_client = completion_client

    @property
    def completion_client(self):
        return self._completion_client or get_completion_client()

    def ingest_coa(self, product_id: str, file_bytes: bytes, source_url: str) -> COAIngestionResult:
        """
        Parse a COA and attach it to a product.

        Raises:
            IngestionError: empty upload or missing source URL
            ProductNotFoundError: unknown product
        """
        if not file_bytes:
            raise IngestionError("COA file is empty")
        if not source_url or not source_url.strip():
            raise IngestionError("COA source URL is required")

        product = self.store.require_product(product_id)
        logger.info(f"Processing COA for product {product_id}")

        text = extract_text(file_bytes)
        extraction = self.extract_with_ai(text)
        merged = self._merge_fallback(extraction, regex_extract(text))

        certificate = self.store.create_lab_certificate({
            "product_id": product.id,
            "url": source_url.strip(),
            "batch_number": merged.batch_number,
            "potency": merged.potency,
            "tested_at": merged.tested_at,
            "lab_name": merged.lab_name,
            "expiration_date": merged.expiration_date,
            "contaminant_results": (
                merged.contaminant_results.model_dump() if merged.contaminant_results else None
            ),
            "is_valid": merged.is_valid,
            "validation_errors": list(merged.validation_errors),
            "parsed_by_ai": True,
        })

        patch: Dict[str, Any] = {"lab_test_url": source_url.strip(), "requires_lab_test": False}
        if merged.batch_number:
            patch["batch_number"] = merged.batch_number
        if merged.expiration_date:
            patch["expiration_date"] = merged.expiration_date
        self.store.update_product(product.id, patch)

        extracted = merged.model_dump(mode="json")
        log_compliance_event("coa_ingested", {
            "product_id": product.id,
            "lab_certificate_id": certificate.id,
            "is_valid": merged.is_valid,
            "batch_number": merged.batch_number,
            "text_length": len(text),
        })

        return COAIngestionResult(
            lab_certificate_id=certificate.id,
            extracted_data=extracted,
            text_length=len(text),
        )

    def extract_with_ai(self, text: str) -> COAExtractionResponse:
        """Structured extraction; any failure degrades to COAExtractionResponse.failed()."""
        user_content = f"Extract data from this COA text:\n\n{text[:MAX_AI_CHARS]}"
        try:
            raw = self.completion_client.complete_json(COA_SYSTEM_PROMPT, user_content)
            return COAExtractionResponse.model_validate_json(raw)
        except (ExternalServiceError, pydantic.ValidationError) as e:
            logger.error(f"AI extraction failed: {e}")
            return COAExtractionResponse.failed()

    @staticmethod
    def _merge_fallback(extraction: COAExtractionResponse, fallback: Dict[str, Any]) -> COAExtractionResponse:
        fills = {
            key: value for key, value in fallback.items()
            if getattr(extraction, key) is None
        }
        if not fills:
            return extraction
        return extraction.model_copy(update=fills)


_parser: Optional[COAParser] = None


def get_coa_parser() -> COAParser:
    global _parser
    if _parser is None:
        _parser = COAParser()
    return _parser
