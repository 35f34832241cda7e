"""Shared pytest configuration.

The API module builds its services at import time from environment
settings, so the test environment is pinned here before any test module
imports it.
"""

import os

import pytest
from sqlalchemy.orm import sessionmaker

from invoicing.storage.database import create_db_engine, init_schema, make_session_factory

TEST_ENCRYPTION_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="

os.environ.setdefault("APP_DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_TOKEN_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
os.environ.setdefault("APP_GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("APP_GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("APP_GOOGLE_REDIRECT_URI", "http://localhost:8000/api/gmail/oauth2callback")
os.environ.setdefault("APP_POST_AUTH_REDIRECT", "/invoices")


@pytest.fixture
def session_factory() -> sessionmaker:
    """Fresh in-memory database with all tables created."""
    engine = create_db_engine("sqlite://")
    init_schema(engine)
    return make_session_factory(engine)
