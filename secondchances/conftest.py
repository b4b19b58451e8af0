# secondchances/conftest.py
import os
import tempfile
from pathlib import Path

import pytest

from secondchances.tests.helpers import WEBHOOK_SECRET

# Configure the environment before any app module reads settings
_TMP_DIR = tempfile.mkdtemp(prefix="secondchances-tests-")
os.environ["ENV"] = "test"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{Path(_TMP_DIR) / 'test.db'}"
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("STRIPE_WEBHOOK_SECRET", None)


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """Create all database tables once per test session."""
    from secondchances.core.database import create_all_tables
    create_all_tables()
    yield


@pytest.fixture(scope="function")
def reset_db():
    """
    Reset database tables around each test.

    Deletes rows in reverse dependency order (SQLite has no TRUNCATE).
    """
    from secondchances.core.database import get_engine, metadata

    def _wipe():
        engine = get_engine()
        with engine.begin() as conn:
            for table in reversed(metadata.sorted_tables):
                conn.execute(table.delete())

    _wipe()
    yield
    _wipe()


@pytest.fixture
def client(reset_db):
    from fastapi.testclient import TestClient
    from secondchances.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(reset_db):
    """Factory: create a user row and return (user, token)."""
    from secondchances.core.auth import create_access_token
    from secondchances.features.users.service import register_user

    counter = {"n": 0}

    def _make(email=None, password="correct-horse", name=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user = register_user(email, password, name)
        return user, create_access_token(user.id, user.email)

    return _make


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET
