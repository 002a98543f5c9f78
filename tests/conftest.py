"""
Pytest fixtures for compliance engine tests.

Provides:
- Flask app and test client fixtures
- Database fixtures with in-memory SQLite
- Mock fixtures for the completion service
- Sample data fixtures (seeded rules, products, ZIP codes)
"""

import json
import os
import sys
import pytest
from unittest.mock import Mock

# Set testing environment before importing app
os.environ["TESTING"] = "true"
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"

# Add the project directory to the Python path
project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_dir not in sys.path:
    sys.path.insert(0, project_dir)


# ============================================================================
# Flask App Fixtures
# ============================================================================

@pytest.fixture
def app():
    """Create Flask application for testing."""
    from app.web import create_app
    from app.web.db import db

    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SECRET_KEY": "test-secret-key",
        "OPENAI_API_KEY": "test-key",
        "BULK_CLASSIFY_PAUSE_SECONDS": 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Database session for direct DB access in tests."""
    from app.web.db import db
    return db.session


# ============================================================================
# Mock Fixtures for External Services
# ============================================================================

@pytest.fixture
def mock_completion(app):
    """
    Replace the app's completion client.

    Set mock_completion.complete_json.return_value (or side_effect) per test.
    """
    mock_client = Mock()
    app.extensions["completion_client"] = mock_client
    return mock_client


def _completion_json(**fields) -> str:
    """Serialize a completion response body."""
    return json.dumps(fields)


@pytest.fixture
def thca_response():
    return _completion_json(
        categories=["thca"],
        nicotine_product=False,
        requires_lab_test=True,
        hidden_reason=None,
    )


@pytest.fixture
def nicotine_response():
    return _completion_json(
        categories=["nicotine"],
        nicotine_product=True,
        requires_lab_test=False,
        hidden_reason="Nicotine products restricted to tobacco site",
    )


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def seeded_rules(app):
    """Seed the default rule catalog; returns the created rule IDs."""
    from app.services.rule_catalog import initialize_default_rules
    return initialize_default_rules()


@pytest.fixture
def make_product(app):
    """Factory for catalog products."""
    from app.web.db.models import Product

    def _make(name="Test Product", description=None, **kwargs):
        return Product.create(name=name, description=description, **kwargs)

    return _make


@pytest.fixture
def thca_product(make_product):
    return make_product(
        name="Blue Dream Flower",
        description="Premium indoor grown hemp, 24% total cannabinoids",
    )


@pytest.fixture
def zipcodes(app):
    """A few ZIP codes in the geographic reference table."""
    from app.services.catalog_store import ZipcodeStore
    ZipcodeStore().upsert([
        {"zip": "73301", "state": "TX", "city": "Austin", "county": "Travis"},
        {"zip": "84101", "state": "UT", "city": "Salt Lake City", "county": "Salt Lake"},
        {"zip": "10001", "state": "NY", "city": "New York", "county": "New York"},
    ])
