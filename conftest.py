# conftest.py

import atexit
import os
import tempfile

import pytest

# Set testing environment BEFORE importing app so app.py loads TestingConfig.
# Sync upserts open their own sessions, so tests need a file database rather
# than a single shared in-memory connection.
os.environ["FLASK_ENV"] = "testing"
_db_fd, _temp_db = tempfile.mkstemp(suffix="_exchange_sync_test.db")
os.close(_db_fd)
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{_temp_db}"


@atexit.register
def _remove_temp_db():
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(_temp_db + suffix)
        except OSError:
            pass


# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from exchange_sync.models import User, db  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without a database")
    config.addinivalue_line("markers", "integration: tests touching the database or the Flask app")
    config.addinivalue_line("markers", "slow: tests that sleep or spin up thread pools")


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    original_config = dict(flask_app.config)
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "SYNC_ENABLED": True,
            "SYNC_WORKER_ENABLED": False,
            "SYNC_UPSERT_MAX_WORKERS": 1,
            "PRACTICE_PANTHER_ACCESS_TOKEN": "test-access-token",
            "PP_CLIENT_ID": None,
            "PP_CLIENT_SECRET": None,
        }
    )

    with flask_app.app_context():
        # Drop any existing tables to ensure clean state
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()
    flask_app.config.clear()
    flask_app.config.update(original_config)


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def coordinator_user():
    user = User(
        username="coordinator",
        email="coordinator@example.com",
        first_name="Casey",
        last_name="Coordinator",
        role="coordinator",
    )
    db.session.add(user)
    db.session.commit()
    return user
