"""
Pytest configuration and fixtures.
"""
from typing import Any, AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from fakes import InMemoryClusterStore, sqlitedb_object
from sqlite_operator.core.reconciler import SQLiteDBReconciler
from sqlite_operator.main import app
from sqlite_operator.services.cluster_store import Kind


@pytest_asyncio.fixture
async def test_client() -> AsyncGenerator[AsyncClient, None]:
    """Create test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def store() -> InMemoryClusterStore:
    """Empty in-memory cluster."""
    return InMemoryClusterStore()


@pytest.fixture
def reconciler(store: InMemoryClusterStore) -> SQLiteDBReconciler:
    return SQLiteDBReconciler(store)


@pytest.fixture
def seed_instance(store: InMemoryClusterStore):
    """Create an SQLiteDB in the fake store and return its raw object."""

    def _seed(name: str = "orders", namespace: str = "default", **spec: Any) -> Dict[str, Any]:
        return store.put(Kind.SQLITEDB, sqlitedb_object(name, namespace, **spec))

    return _seed
