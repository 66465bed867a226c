"""
Pytest Configuration and Fixtures

Tests run against a throwaway SQLite database (aiosqlite). The environment
is prepared before any engine module is imported: config.py and database.py
read it at import time.
"""
import os
import sys
import tempfile
from datetime import datetime, timezone

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="decision-engine-tests-")
os.environ["DATABASE_URL"] = os.getenv(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'decisions.db')}"
)
os.environ["EVALUATION_SCHEDULER_ENABLED"] = "false"
os.environ.pop("CONFLICT_ORACLE_URL", None)

# Add services/core to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'services', 'core'))

from domain.enums import ActorRole  # noqa: E402
from domain.governance import Actor  # noqa: E402


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for service-level tests"""
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def member() -> Actor:
    return Actor(id="member-1", role=ActorRole.MEMBER)


@pytest.fixture
def lead() -> Actor:
    return Actor(id="lead-1", role=ActorRole.LEAD)


@pytest.fixture
def member_headers() -> dict:
    return {"X-Actor-Id": "member-1", "X-Actor-Role": "member"}


@pytest.fixture
def lead_headers() -> dict:
    return {"X-Actor-Id": "lead-1", "X-Actor-Role": "lead"}
