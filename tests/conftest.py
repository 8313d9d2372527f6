"""Shared fixtures for the Ainadeul test suite.

Provides a Flask test client with backend config set to dummy values.
Tests that reach the backend patch app._get_client with a mock.
"""

import os
from datetime import date

import pytest

# Suppress the SECRET_KEY startup guard
os.environ.setdefault("SECRET_KEY", "test-secret-key")

# Routes refuse to run without backend config; point it at a dummy project
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "fake-anon-key-for-tests")

from app import app, limiter  # noqa: E402
from api_trace import clear_trace  # noqa: E402

# Fixed "today" for deterministic age math
AS_OF = date(2026, 10, 1)


@pytest.fixture(autouse=True)
def _no_leaked_trace():
    """Each test starts without a thread-local trace."""
    clear_trace()
    yield
    clear_trace()


@pytest.fixture()
def client():
    """Flask test client with rate limiting disabled."""
    app.config["TESTING"] = True
    limiter.enabled = False
    with app.test_client() as c:
        yield c
    limiter.enabled = True


@pytest.fixture()
def as_of():
    return AS_OF
