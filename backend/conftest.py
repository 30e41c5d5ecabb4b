"""Pytest collection helpers for backend test runs.

Lives at the backend/ root so it is loaded before any formhub module reads
its settings.
"""
import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
from formhub.core.config import settings  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def force_testing_mode():
    """Force TESTING=True early in the test session so imports can read it."""
    settings.TESTING = True


def pytest_collection_modifyitems(items):
    """Treat legacy pytest.mark.asyncio as anyio-compatible so tests run under pytest-anyio."""
    for item in items:
        if 'asyncio' in getattr(item, 'keywords', {}):
            item.add_marker(pytest.mark.anyio)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"
