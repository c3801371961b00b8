# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py selects TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from leads_app.models import Workspace, db  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "WARNING",
            "LEADS_IMPORT_CLI_ENABLED": True,
            "LEADS_SOFT_MATCH_THRESHOLD": 0.90,
            "LEADS_PREVIEW_DEFAULT_LIMIT": 50,
            "LEADS_PREVIEW_MAX_LIMIT": 200,
            "LEADS_MAX_UPLOAD_MB": 25,
        }
    )

    # Re-initialize logging with updated config
    from leads_app.utils.logging_config import setup_logging

    setup_logging(flask_app)

    with flask_app.app_context():
        # Start every test from an empty schema
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def workspace(app):
    """A persisted workspace that owns imported leads."""
    ws = Workspace(name="Acme Outreach", slug="acme-outreach")
    db.session.add(ws)
    db.session.commit()
    return ws


@pytest.fixture
def other_workspace(app):
    ws = Workspace(name="Other Tenant", slug="other-tenant")
    db.session.add(ws)
    db.session.commit()
    return ws


# Pytest configuration
def pytest_configure(config):
    """Register custom markers and ensure testing environment"""
    os.environ["FLASK_ENV"] = "testing"

    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
