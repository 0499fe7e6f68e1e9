"""
CRUD Kernel — Store Protocol

The store is the external collaborator that actually holds resources.
Implement with Postgres for production (crud.postgres_store), or in-memory
for tests and local development.
"""

from __future__ import annotations

import copy
from typing import Any

from crud.errors import ValidationError
from crud.query import Query, apply_query


class Store:
    """
    Abstract storage interface.

    Resources are plain dicts keyed by the collection's primary key. Failures
    should be raised as crud.errors.StorageError, except a duplicate primary
    key or unique field, which is a ValidationError on that field.
    """

    async def fetch(self, query: Query) -> list[dict[str, Any]]:
        """Run a query and return one page of resources."""
        raise NotImplementedError

    async def count(self, query: Query) -> int:
        """Count every resource matching the query, ignoring the page window."""
        raise NotImplementedError

    async def get(self, collection: str, resource_id: str) -> dict[str, Any] | None:
        """Fetch one resource. Returns None if not found."""
        raise NotImplementedError

    async def insert(self, collection: str, values: dict[str, Any]) -> dict[str, Any]:
        """Insert a resource (values include the primary key) and return it."""
        raise NotImplementedError

    async def update(
        self, collection: str, resource_id: str, values: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]] | None:
        """Merge values into a resource. Returns (old, new), or None if not found."""
        raise NotImplementedError

    async def delete(self, collection: str, resource_id: str) -> dict[str, Any] | None:
        """Delete a resource. Returns the deleted resource, or None if not found."""
        raise NotImplementedError


class MemoryStore(Store):
    """In-memory storage for tests and the development server."""

    def __init__(
        self,
        primary_keys: dict[str, str] | None = None,
        unique_fields: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.primary_keys = primary_keys or {}
        self.unique_fields = unique_fields or {}

    def _table(self, collection: str) -> dict[str, dict[str, Any]]:
        return self.tables.setdefault(collection, {})

    def _check_unique(self, collection: str, row: dict[str, Any], resource_id: str) -> None:
        """Raise ValidationError if another resource already holds one of row's unique values."""
        taken: dict[str, str] = {}
        for name in self.unique_fields.get(collection, ()):
            value = row.get(name)
            if value is None:
                continue
            if any(rid != resource_id and other.get(name) == value for rid, other in self._table(collection).items()):
                taken[name] = "already exists"
        if taken:
            raise ValidationError(collection, taken)

    async def fetch(self, query: Query) -> list[dict[str, Any]]:
        rows = apply_query(query, self._table(query.collection).values())
        return copy.deepcopy(rows)

    async def count(self, query: Query) -> int:
        return len(apply_query(query, self._table(query.collection).values(), paginate=False))

    async def get(self, collection: str, resource_id: str) -> dict[str, Any] | None:
        row = self._table(collection).get(resource_id)
        return copy.deepcopy(row) if row is not None else None

    async def insert(self, collection: str, values: dict[str, Any]) -> dict[str, Any]:
        pk = self.primary_keys.get(collection, "id")
        row = copy.deepcopy(values)
        table = self._table(collection)
        if row[pk] in table:
            raise ValidationError(collection, {pk: "already exists"})
        self._check_unique(collection, row, row[pk])
        table[row[pk]] = row
        return copy.deepcopy(row)

    async def update(
        self, collection: str, resource_id: str, values: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]] | None:
        table = self._table(collection)
        old = table.get(resource_id)
        if old is None:
            return None
        new = {**old, **copy.deepcopy(values)}
        self._check_unique(collection, new, resource_id)
        table[resource_id] = new
        return copy.deepcopy(old), copy.deepcopy(new)

    async def delete(self, collection: str, resource_id: str) -> dict[str, Any] | None:
        row = self._table(collection).pop(resource_id, None)
        return copy.deepcopy(row) if row is not None else None
