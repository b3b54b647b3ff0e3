"""
Shared test fixtures for the AltoCRM suite.

Database access is mocked throughout: ``patch_db`` swaps ``get_cursor`` in the
named modules for a context manager yielding one shared MagicMock cursor.
"""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from altocrm.config import reset_config


@pytest.fixture
def test_prefix():
    """Unique prefix for test isolation."""
    return f"test_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that leak between tests and reset the config singleton."""
    for key in [
        "DATABASE_URL",
        "PORT",
        "ALTOCRM_HOST",
        "ALTOCRM_JOB_POLL_SECONDS",
        "ALTOCRM_JOBS_ENABLED",
        "ALTOCRM_PURGE_AFTER_DAYS",
        "ALTOCRM_LOG_LEVEL",
        "ALTOCRM_DB_MIN_CONNECTIONS",
        "ALTOCRM_DB_MAX_CONNECTIONS",
    ]:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def mock_cursor():
    """A dict-row cursor stand-in: no rows, nothing affected."""
    cur = MagicMock()
    cur.fetchone.return_value = None
    cur.fetchall.return_value = []
    cur.rowcount = 0
    return cur


@pytest.fixture
def patch_db(mock_cursor):
    """Patch ``get_cursor`` in each given module to yield ``mock_cursor``.

    Usage:
        cur = patch_db("altocrm.crm.dal")
    """
    patchers = []

    def _patch(*modules: str):
        for module in modules:
            p = patch(f"{module}.get_cursor")
            mock_get_cursor = p.start()
            mock_get_cursor.return_value.__enter__ = MagicMock(return_value=mock_cursor)
            mock_get_cursor.return_value.__exit__ = MagicMock(return_value=False)
            patchers.append(p)
        return mock_cursor

    yield _patch
    for p in patchers:
        p.stop()


@pytest.fixture
def lead_id():
    return str(uuid.uuid4())


@pytest_asyncio.fixture
async def test_client():
    """Async HTTP client wrapping the AltoCRM app via ASGITransport (no lifespan, no worker)."""
    from altocrm.api.app import create_app

    transport = ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
