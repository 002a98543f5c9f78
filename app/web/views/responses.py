"""
JSON error envelope shared by the compliance blueprints.
"""

import logging

from flask import jsonify, request

from app.services.errors import ComplianceError, ValidationError

logger = logging.getLogger(__name__)


def error_response(e: Exception):
    """{"success": false, "error": code, "message": ...} with the error's status."""
    if isinstance(e, ComplianceError):
        if e.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.code}: {e}")
        return jsonify(e.to_dict()), e.status_code

    logger.exception(f"Unhandled error on {request.method} {request.path}")
    return jsonify({
        "success": False,
        "error": "internal_error",
        "message": "Internal server error",
    }), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_arg(name: str, default: int) -> int:
    value = request.args.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValidationError(f"{name} must be an integer") from e


def bool_arg(name: str):
    value = request.args.get(name)
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be true or false")
