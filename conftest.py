# conftest.py

import os
import pytest

# Set testing environment BEFORE importing app so app.py selects TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from attendance_app.ingest.storage import BLOB_STORE_EXTENSION_KEY, LocalBlobStore  # noqa: E402
from attendance_app.models import db  # noqa: E402


@pytest.fixture(scope="function")
def app(tmp_path):
    """Create and configure a test Flask application"""
    storage_dir = tmp_path / "attendance_storage"

    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "ATTENDANCE_STORAGE_DIR": str(storage_dir),
            "ATTENDANCE_STORAGE_PREFIX": "attendance",
            "ATTENDANCE_LOCK_ON_COMMIT": True,
            "ATTENDANCE_SINGLE_INGESTION": False,
            "ATTENDANCE_RECORD_DUPLICATE_SCANS": True,
            "ATTENDANCE_VERSION_RETRY_LIMIT": 3,
            "ATTENDANCE_MAX_UPLOAD_MB": 10,
            "ATTENDANCE_WORKER_ENABLED": False,
            "ATTENDANCE_TASK_MAX_RETRIES": 5,
        }
    )
    # Each test gets its own blob store root
    flask_app.extensions[BLOB_STORE_EXTENSION_KEY] = LocalBlobStore(storage_dir)

    # The in-memory engine is created once at init_app; reset its schema per test
    with flask_app.app_context():
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
def blob_store(app):
    """The per-test blob store backing uploads and partitions"""
    return app.extensions[BLOB_STORE_EXTENSION_KEY]


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers and ensure testing environment"""
    os.environ["FLASK_ENV"] = "testing"

    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers"""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.slow)
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
