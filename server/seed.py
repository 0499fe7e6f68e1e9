"""
Dummy catalog data for empty stores.

Inserted at startup when SEED_DUMMY_DATA=true, so a fresh development server
has something to browse. Goes straight to the store: seeding is not a client
request and does not pass through the access filters.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from crud.query import Query
from crud.store import Store
from server.auth import hash_password

logger = logging.getLogger(__name__)

DEMO_USERNAME = "alice"
DEMO_PASSWORD = "password123"

CATEGORIES: list[tuple[str, str]] = [
    ("Smartphones", "Phones and accessories"),
    ("Tablets", "Tablets of every size"),
    ("Laptops", "Portable computers"),
]

PRODUCTS: dict[str, list[tuple[str, int, float]]] = {
    "Smartphones": [("Pixel", 12, 599.0), ("Galaxy", 4, 649.0), ("Moto", 25, 199.0), ("Nokia", 2, 149.0)],
    "Tablets": [("Tab S", 7, 499.0), ("Fire HD", 30, 89.0)],
    "Laptops": [("ThinkPad", 3, 1299.0), ("XPS", 9, 1499.0), ("Chromebook", 18, 329.0)],
}


async def _is_empty(store: Store, collection: str) -> bool:
    return await store.count(Query.base(collection)) == 0


async def seed_dummy_data(store: Store) -> dict[str, int]:
    """
    Populate each empty collection. Collections that already hold data are left alone.

    Returns the number of resources inserted per collection.
    """
    inserted = {"Category": 0, "Product": 0, "User": 0}

    if await _is_empty(store, "Category"):
        category_ids: dict[str, str] = {}
        for name, desc in CATEGORIES:
            category_id = uuid.uuid4().hex
            await store.insert("Category", {"id": category_id, "name": name, "desc": desc})
            category_ids[name] = category_id
            inserted["Category"] += 1

        if await _is_empty(store, "Product"):
            for category_name, products in PRODUCTS.items():
                for name, qty, price in products:
                    await store.insert(
                        "Product",
                        {
                            "id": uuid.uuid4().hex,
                            "name": name,
                            "qty": qty,
                            "price": price,
                            "desc": None,
                            "category": category_ids[category_name],
                        },
                    )
                    inserted["Product"] += 1

    if await _is_empty(store, "User"):
        password = await asyncio.to_thread(hash_password, DEMO_PASSWORD)
        await store.insert("User", {"id": uuid.uuid4().hex, "username": DEMO_USERNAME, "password": password})
        inserted["User"] += 1

    logger.info("seeded dummy data: %s", inserted)
    return inserted
