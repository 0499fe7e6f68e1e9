"""
CRUD kernel test configuration.

Kernel tests run against MemoryStore and a catalog declared in
kernel_doubles, so they never import the server package (and never need
JWT_SECRET or a database). PostgresStore tests skip themselves unless
TEST_DATABASE_URL is set.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from kernel_doubles import CountingStore, FakeSession, catalog_configs

from crud.collections import Catalog
from crud.dispatcher import CrudDispatcher
from crud.types import Identity


@pytest.fixture
def catalog() -> Catalog:
    return Catalog.from_configs(catalog_configs())


@pytest.fixture
def store(catalog) -> CountingStore:
    return CountingStore(catalog.primary_keys, catalog.unique_fields)


@pytest.fixture
def dispatcher(catalog, store) -> CrudDispatcher:
    return CrudDispatcher(catalog, store)


@pytest.fixture
def alice() -> Identity:
    return Identity(subject="u1", username="alice", expires_at=datetime.now(UTC) + timedelta(hours=1))


@pytest.fixture
def session(alice) -> FakeSession:
    return FakeSession("s1", identity=alice)


@pytest.fixture
def anonymous() -> FakeSession:
    return FakeSession("anon")


@pytest.fixture
async def seeded(store):
    """Two categories and five products, written straight to the store."""
    await store.insert("Category", {"id": "c1", "name": "Phones", "desc": None})
    await store.insert("Category", {"id": "c2", "name": "Laptops", "desc": "Portable"})
    products = [
        {"id": "p1", "name": "Pixel", "qty": 12, "price": 599.0, "desc": None, "category": "c1"},
        {"id": "p2", "name": "Galaxy", "qty": 4, "price": 649.0, "desc": None, "category": "c1"},
        {"id": "p3", "name": "Nokia", "qty": 2, "price": 149.0, "desc": None, "category": "c1"},
        {"id": "p4", "name": "Moto", "qty": 10, "price": 199.0, "desc": None, "category": "c1"},
        {"id": "p5", "name": "XPS", "qty": 3, "price": 1499.0, "desc": None, "category": "c2"},
    ]
    for product in products:
        await store.insert("Product", product)
    store.calls.clear()
    return store
