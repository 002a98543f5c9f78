"""
Compliance administration API.

Provides endpoints for:
1. Rule catalog (seed, list, create, update)
2. Per-product compliance (state check, summary, audit, manual assignment,
   visibility reset)
3. Violation log (audit all, list, resolve, stats)
"""

from flask import Blueprint, request, jsonify

from app.services.compliance_service import get_compliance_service
from app.services.schemas import (
    parse_payload,
    ComplianceRuleCreate,
    ComplianceRuleUpdate,
    AssignCategoryRequest,
    ResolveViolationRequest,
    ResetVisibilityRequest,
)
from app.web.views.responses import error_response, json_body, int_arg, bool_arg

bp = Blueprint("compliance", __name__, url_prefix="/compliance")


# ─────────────────────────────────────────────────────────────────────────────
# Rules
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/initialize", methods=["POST"])
def initialize_rules():
    """Seed the default compliance rules (idempotent)."""
    try:
        created = get_compliance_service().initialize_default_rules()
        return jsonify({"success": True, "created": created})

    except Exception as e:
        return error_response(e)


@bp.route("/rules", methods=["GET"])
def list_rules():
    try:
        rules = get_compliance_service().list_rules()
        return jsonify({"success": True, "rules": [r.as_dict() for r in rules]})

    except Exception as e:
        return error_response(e)


@bp.route("/rules/<category>", methods=["GET"])
def list_rules_by_category(category: str):
    try:
        rules = get_compliance_service().list_rules(category)
        return jsonify({"success": True, "rules": [r.as_dict() for r in rules]})

    except Exception as e:
        return error_response(e)


@bp.route("/rules", methods=["POST"])
def create_rule():
    try:
        payload = parse_payload(ComplianceRuleCreate, json_body())
        rule = get_compliance_service().create_rule(payload)
        return jsonify({"success": True, "rule": rule.as_dict()}), 201

    except Exception as e:
        return error_response(e)


@bp.route("/rules/<rule_id>", methods=["PATCH"])
def update_rule(rule_id: str):
    try:
        payload = parse_payload(ComplianceRuleUpdate, json_body())
        rule = get_compliance_service().update_rule(rule_id, payload)
        return jsonify({"success": True, "rule": rule.as_dict()})

    except Exception as e:
        return error_response(e)


# ─────────────────────────────────────────────────────────────────────────────
# Products
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/products/<product_id>/state/<state>", methods=["GET"])
def check_state_compliance(product_id: str, state: str):
    try:
        result = get_compliance_service().check_state_compliance(product_id, state)
        return jsonify({"success": True, "product_id": product_id, "state": state.upper(), **result})

    except Exception as e:
        return error_response(e)


@bp.route("/products/<product_id>/summary", methods=["GET"])
def product_summary(product_id: str):
    try:
        summary = get_compliance_service().product_summary(product_id)
        return jsonify({"success": True, **summary})

    except Exception as e:
        return error_response(e)


@bp.route("/products/<product_id>/audit", methods=["POST"])
def audit_product(product_id: str):
    """Audit one product and record what was found."""
    try:
        service = get_compliance_service()
        violations = service.audit_product(product_id)
        service.log_violations(violations, source="manual-audit")
        return jsonify({
            "success": True,
            "product_id": product_id,
            "violations": [v.as_dict() for v in violations],
        })

    except Exception as e:
        return error_response(e)


@bp.route("/products/<product_id>/assign", methods=["POST"])
def assign_category(product_id: str):
    try:
        payload = parse_payload(AssignCategoryRequest, json_body())
        rule = get_compliance_service().assign_category(product_id, payload.category, payload.substance_type)
        return jsonify({"success": True, "product_id": product_id, "rule": rule.as_dict()})

    except Exception as e:
        return error_response(e)


@bp.route("/products/<product_id>/visibility/reset", methods=["POST"])
def reset_visibility(product_id: str):
    """Manually return a hidden product to the main site."""
    try:
        payload = parse_payload(ResetVisibilityRequest, json_body())
        product = get_compliance_service().reset_visibility(product_id, payload.reset_by, payload.notes)
        return jsonify({"success": True, "product": product.as_dict()})

    except Exception as e:
        return error_response(e)


# ─────────────────────────────────────────────────────────────────────────────
# Audit log
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/audit/all", methods=["POST"])
def audit_all_products():
    try:
        totals = get_compliance_service().audit_all_products()
        return jsonify({"success": True, **totals})

    except Exception as e:
        return error_response(e)


@bp.route("/audit/logs", methods=["GET"])
def list_audit_logs():
    """
    List violations, newest first.

    Query params:
        page: Page number (default 1)
        limit: Page size (default 50, max 200)
        severity: low, medium, high, critical
        resolved: true / false
    """
    try:
        result = get_compliance_service().list_violations(
            page=int_arg("page", 1),
            limit=int_arg("limit", 50),
            severity=request.args.get("severity") or None,
            resolved=bool_arg("resolved"),
        )
        return jsonify({"success": True, **result})

    except Exception as e:
        return error_response(e)


@bp.route("/audit/logs/<log_id>/resolve", methods=["PATCH"])
def resolve_violation(log_id: str):
    try:
        payload = parse_payload(ResolveViolationRequest, json_body())
        entry = get_compliance_service().resolve_violation(log_id, payload.resolved_by, payload.notes)
        return jsonify({"success": True, "log": entry.as_dict()})

    except Exception as e:
        return error_response(e)


@bp.route("/stats", methods=["GET"])
def compliance_stats():
    try:
        return jsonify({"success": True, "stats": get_compliance_service().compliance_stats()})

    except Exception as e:
        return error_response(e)
