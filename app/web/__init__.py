"""
Flask application factory.
"""

import logging
from typing import Optional, Dict, Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from app.web.config import Config
from app.web.db import db

logger = logging.getLogger(__name__)


def create_app(config_overrides: Optional[Dict[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    db.init_app(app)
    register_extensions(app)
    register_blueprints(app)
    register_error_handlers(app)

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"success": True, "status": "ok"})

    return app


def configure_logging(app: Flask):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("app").setLevel(level)


def register_extensions(app: Flask):
    from app.services.completion_client import CompletionClient
    from app.services.rule_catalog import RuleCatalog

    app.extensions["rule_catalog"] = RuleCatalog()
    app.extensions["completion_client"] = CompletionClient(
        model=app.config["OPENAI_MODEL"],
        timeout=app.config["COMPLETION_TIMEOUT_SECONDS"],
        api_key=app.config["OPENAI_API_KEY"],
    )


def register_blueprints(app: Flask):
    from app.web.views import eligibility_views, compliance_views, classification_views

    app.register_blueprint(eligibility_views.bp)
    app.register_blueprint(compliance_views.bp)
    app.register_blueprint(classification_views.bp)


def register_error_handlers(app: Flask):
    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        code = (e.name or "http_error").lower().replace(" ", "_")
        return jsonify({"success": False, "error": code, "message": e.description}), e.code
