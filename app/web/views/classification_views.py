"""
Classification and COA ingestion API.
"""

import logging

from flask import Blueprint, request, jsonify

from app.services.ai_classifier import get_ai_classifier
from app.services.coa_parser import get_coa_parser
from app.services.compliance_service import get_compliance_service
from app.services.catalog_store import CatalogStore
from app.services.errors import IngestionError
from app.services.rule_catalog import get_rule_catalog
from app.services.schemas import (
    parse_payload,
    AnalyzeRequest,
    ClassifyProductRequest,
    BulkClassifyRequest,
)
from app.web.views.responses import error_response, json_body

logger = logging.getLogger(__name__)

bp = Blueprint("classification", __name__, url_prefix="/ai")

ALLOWED_COA_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
}


@bp.route("/analyze", methods=["POST"])
def analyze_product_text():
    """Keyword engine only; nothing is persisted and the AI is not called."""
    try:
        payload = parse_payload(AnalyzeRequest, json_body())
        evaluation = get_rule_catalog().keyword_engine().evaluate(payload.name, payload.description)
        return jsonify({"success": True, "analysis": evaluation.as_dict()})

    except Exception as e:
        return error_response(e)


@bp.route("/classify/product", methods=["POST"])
def classify_product():
    try:
        payload = parse_payload(ClassifyProductRequest, json_body())
        result = get_ai_classifier().classify_product(payload.product_id, force_ai=payload.force_ai)
        return jsonify({"success": True, "classification": result.as_dict()})

    except Exception as e:
        return error_response(e)


@bp.route("/classify/bulk", methods=["POST"])
def classify_bulk():
    """
    Classify many products synchronously.

    Body:
        product_ids: optional list of IDs
        limit: candidate cap when product_ids is omitted (default 100)
    """
    try:
        payload = parse_payload(BulkClassifyRequest, json_body())
        summary = get_ai_classifier().bulk_classify(product_ids=payload.product_ids, limit=payload.limit)
        return jsonify({"success": True, "summary": summary.as_dict()})

    except Exception as e:
        return error_response(e)


@bp.route("/coa/ingest", methods=["POST"])
def ingest_coa():
    """
    Multipart form:
        coa: the COA file (PDF, JPEG, PNG or WebP, max 10MB)
        product_id: product the COA belongs to
        url: where the COA is published
    """
    try:
        upload = request.files.get("coa")
        product_id = (request.form.get("product_id") or "").strip()
        url = (request.form.get("url") or "").strip()

        if upload is None:
            raise IngestionError("No COA file provided")
        if not product_id:
            raise IngestionError("product_id is required")
        if upload.mimetype not in ALLOWED_COA_TYPES:
            raise IngestionError(f"Unsupported COA file type: {upload.mimetype}")

        result = get_coa_parser().ingest_coa(product_id, upload.read(), url)
        return jsonify({"success": True, **result.as_dict()})

    except Exception as e:
        return error_response(e)


@bp.route("/products/<product_id>/lab-certificates", methods=["GET"])
def list_lab_certificates(product_id: str):
    try:
        store = CatalogStore()
        store.require_product(product_id)
        certificates = store.get_lab_certificates(product_id)
        return jsonify({
            "success": True,
            "product_id": product_id,
            "lab_certificates": [c.as_dict() for c in certificates],
        })

    except Exception as e:
        return error_response(e)


@bp.route("/history/<product_id>", methods=["GET"])
def classification_history(product_id: str):
    try:
        history = get_compliance_service().classification_history(product_id)
        return jsonify({"success": True, **history})

    except Exception as e:
        return error_response(e)
