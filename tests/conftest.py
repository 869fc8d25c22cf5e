# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import os

import pytest

# Set test environment before any newsagg import builds an engine or settings
os.environ.setdefault("TESTING", "1")
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["LOG_JSON"] = "false"
for _key in ("RAPIDAPI_KEY", "NEWSDATA_API_KEY", "GNEWS_API_KEY", "MEDIASTACK_API_KEY", "REDIS_URL"):
    os.environ.pop(_key, None)

from sqlalchemy.orm import sessionmaker  # noqa: E402

from newsagg.database import init_db, make_engine  # noqa: E402
from newsagg.services.quota_ledger import QuotaLedger, QuotaPolicy  # noqa: E402
from newsagg.services.source_registry import SourceRegistry  # noqa: E402
from tests.factories import MutableClock, make_provider  # noqa: E402


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def registry():
    """Two enabled providers, alpha preferred over beta."""
    return SourceRegistry([make_provider("alpha", 1), make_provider("beta", 2)])


@pytest.fixture
def quota_policy():
    return QuotaPolicy(warning_threshold=0.85, critical_threshold=0.95, timezone="Asia/Kolkata")


@pytest.fixture
def ledger(registry, quota_policy, clock):
    return QuotaLedger(registry, quota_policy, clock=clock)


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    engine = make_engine("sqlite:///:memory:")
    init_db(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    yield factory
    engine.dispose()
