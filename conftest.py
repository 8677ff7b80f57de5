# conftest.py

import json
import os

import pytest

# Set testing environment BEFORE importing app so app.py selects TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from subsync_app.sync.celery_app import SYNC_EXTENSION_KEY  # noqa: E402
from subsync_app.sync.pipeline.engine import build_engine_from_app  # noqa: E402


@pytest.fixture(scope="function")
def token_file(tmp_path):
    """A token cache holding a usable access/refresh pair."""
    path = tmp_path / "tokens" / ".oauth-tokens.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps({"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 1800}),
        encoding="utf-8",
    )
    return path


@pytest.fixture(scope="function")
def app(tmp_path, token_file):
    """Configure the shared Flask application for an isolated test"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "HUBSPOT_CLIENT_ID": "client-id",
            "HUBSPOT_CLIENT_SECRET": "client-secret",
            "HUBSPOT_REDIRECT_URI": "http://localhost:5000/oauth/callback",
            "HUBSPOT_ACCOUNTS_OBJECT_TYPE_ID": "2-123456",
            "HUBSPOT_TOKEN_FILE": str(token_file),
            "SYNC_UPLOAD_DIR": str(tmp_path / "uploads"),
            "SYNC_MAX_UPLOAD_MB": 50,
            "SYNC_WORKER_ENABLED": False,
            "SYNC_WAVE_COOLDOWN_SECONDS": 0.0,
            "SYNC_LOOKUP_DELAY_SECONDS": 0.0,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
        }
    )
    state = flask_app.extensions[SYNC_EXTENSION_KEY]
    state["worker_enabled"] = False
    state["engine_factory"] = build_engine_from_app

    with flask_app.app_context():
        yield flask_app

    state["engine_factory"] = build_engine_from_app


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()
