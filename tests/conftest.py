"""Shared test fixtures.

ASGITransport does not run the app lifespan, so no ledger, oracle or
background loop is built; API tests inject fakes through
app.dependency_overrides, which this fixture resets afterwards.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
