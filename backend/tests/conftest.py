"""
Pytest configuration and fixtures for LifeOS backend tests.

Routes run against an in-memory kernel installed on app.state, so no
database is needed. The ASGI transport does not run the app lifespan.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from backend.main import app
from lifeos.kernel.assembly import LifeKernel
from lifeos.kernel.event_log import MemoryEventLog
from lifeos.kernel.events import DEFAULT_TEST_TS

TEST_USER = "user_test"


@pytest.fixture
def kernel():
    """Fresh kernel per test, pinned to 2026-01-01T12:00Z."""
    return LifeKernel(MemoryEventLog(), clock=lambda: DEFAULT_TEST_TS)


@pytest_asyncio.fixture
async def async_client(kernel):
    """Async HTTP client against the ASGI app, signed in as TEST_USER."""
    app.state.kernel = kernel
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": TEST_USER},
    ) as client:
        yield client
