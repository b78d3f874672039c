"""
Pytest configuration and fixtures for the question import tests.

Every test runs against its own SQLite file so imports, topics and questions
never leak between tests. The application lifespan bootstrap is skipped;
tables are created here instead.
"""

import os

# The lifespan hook must not try to reach PostgreSQL during tests.
os.environ.setdefault("SKIP_DB_INIT", "1")

import pytest
from fastapi.testclient import TestClient

from qbank.api.dependencies import get_import_queue, get_rate_limit_store
from qbank.core.config import settings
from qbank.core.rate_limit import InMemoryRateLimitStore
from qbank.db import session as db_session
from qbank.db.schema import create_question_bank_tables
from qbank.domain.imports.tasks import ImportTaskQueue
from qbank.main import app
from tests.utils.question_bank import admin_headers


@pytest.fixture(autouse=True)
def test_database(tmp_path, monkeypatch):
    """Point the engine at a fresh SQLite database and create the pipeline tables."""
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'qbank.db'}")
    monkeypatch.setattr(settings, "import_retry_delay_seconds", 0.0)
    db_session.reset_engine()
    create_question_bank_tables(force=True)

    yield db_session.get_engine()

    db_session.reset_engine()


@pytest.fixture
def import_queue():
    queue = ImportTaskQueue(max_workers=2)
    yield queue
    queue.shutdown(wait_for_jobs=True)


@pytest.fixture
def rate_limit_store():
    return InMemoryRateLimitStore(max_requests=3, window_seconds=60)


@pytest.fixture
def client(import_queue, rate_limit_store):
    app.dependency_overrides[get_import_queue] = lambda: import_queue
    app.dependency_overrides[get_rate_limit_store] = lambda: rate_limit_store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return admin_headers("admin-1")
