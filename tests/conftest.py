"""
Pytest configuration and fixtures.
"""
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tests.factories import FakeKubernetes


@pytest.fixture
def fake_kubernetes() -> FakeKubernetes:
    """Fake object store."""
    return FakeKubernetes()


@pytest_asyncio.fixture
async def test_client() -> AsyncGenerator[AsyncClient, None]:
    """Create test client (the lifespan, and so the worker, is not started)."""
    from pgcluster.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
