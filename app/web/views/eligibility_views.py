"""
Destination eligibility lookup.
"""

from flask import Blueprint, request, jsonify

from app.services.eligibility import get_eligibility_aggregator
from app.web.views.responses import error_response

bp = Blueprint("eligibility", __name__)


@bp.route("/eligibility", methods=["GET"])
def check_eligibility():
    """
    Restricted categories and merged shipping restrictions for a ZIP.

    Query params:
        zip: 5-digit US ZIP code
    """
    try:
        result = get_eligibility_aggregator().check_eligibility(request.args.get("zip", ""))
        return jsonify({"success": True, **result.as_dict()})

    except Exception as e:
        return error_response(e)
