"""
PostgresStore adapter for the CRUD kernel.

Implements the Store protocol on top of an asyncpg pool. Each collection maps
to one table whose columns are the collection's schema fields.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import asyncpg

from crud.errors import StorageError, ValidationError
from crud.query import Query, compile_count, compile_select, quote_ident
from crud.schema import SchemaRegistry
from crud.store import Store

logger = logging.getLogger(__name__)

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

# "Key (username)=(alice) already exists."
_DUPLICATE_KEY = re.compile(r"Key \(([^)]+)\)=")


def _duplicate_error(collection: str, pk: str, e: asyncpg.UniqueViolationError) -> ValidationError:
    match = _DUPLICATE_KEY.search(getattr(e, "detail", None) or "")
    field_name = match.group(1).strip('"') if match else pk
    return ValidationError(collection, {field_name: "already exists"})


class PostgresStore(Store):
    """
    Postgres-based storage for catalog collections.

    `tables` maps collection name to table name; column names are taken from
    the schema registry so no caller-supplied identifier reaches the SQL.
    """

    def __init__(self, pool: asyncpg.Pool, tables: dict[str, str], schemas: SchemaRegistry):
        self.pool = pool
        self.tables = dict(tables)
        self.schemas = schemas

    def _table(self, collection: str) -> tuple[str, list[str], str]:
        schema = self.schemas.get(collection)
        try:
            table = self.tables[collection]
        except KeyError:
            raise StorageError(f"No table configured for {collection}") from None
        return table, schema.field_names, schema.primary_key

    async def fetch(self, query: Query) -> list[dict[str, Any]]:
        table, columns, _ = self._table(query.collection)
        sql, args = compile_select(query, table, columns)
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(sql, *args)
        except _STORE_ERRORS as e:
            logger.warning("postgres fetch failed on %s: %s", table, e)
            raise StorageError() from e
        return [dict(row) for row in rows]

    async def count(self, query: Query) -> int:
        table, columns, _ = self._table(query.collection)
        sql, args = compile_count(query, table, columns)
        try:
            async with self.pool.acquire() as conn:
                total = await conn.fetchval(sql, *args)
        except _STORE_ERRORS as e:
            logger.warning("postgres count failed on %s: %s", table, e)
            raise StorageError() from e
        return total or 0

    async def get(self, collection: str, resource_id: str) -> dict[str, Any] | None:
        table, _, pk = self._table(collection)
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT * FROM {quote_ident(table)} WHERE {quote_ident(pk)} = $1",  # nosec B608
                    resource_id,
                )
        except _STORE_ERRORS as e:
            logger.warning("postgres get failed on %s: %s", table, e)
            raise StorageError() from e
        return dict(row) if row else None

    async def insert(self, collection: str, values: dict[str, Any]) -> dict[str, Any]:
        table, columns, pk = self._table(collection)
        names = [name for name in values if name in columns]
        placeholders = ", ".join(f"${i + 1}" for i in range(len(names)))
        # S608/B608: identifiers come from the schema registry and are quoted
        sql = (
            f"INSERT INTO {quote_ident(table)} ({', '.join(quote_ident(n) for n in names)}) "
            f"VALUES ({placeholders}) RETURNING *"
        )  # nosec B608
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(sql, *(values[n] for n in names))
        except asyncpg.UniqueViolationError as e:
            raise _duplicate_error(collection, pk, e) from e
        except _STORE_ERRORS as e:
            logger.warning("postgres insert failed on %s: %s", table, e)
            raise StorageError() from e
        return dict(row)

    async def update(
        self, collection: str, resource_id: str, values: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]] | None:
        table, columns, pk = self._table(collection)
        names = [name for name in values if name in columns and name != pk]
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    old = await conn.fetchrow(
                        f"SELECT * FROM {quote_ident(table)} WHERE {quote_ident(pk)} = $1 FOR UPDATE",  # nosec B608
                        resource_id,
                    )
                    if old is None:
                        return None
                    if not names:
                        return dict(old), dict(old)
                    set_clause = ", ".join(f"{quote_ident(n)} = ${i + 2}" for i, n in enumerate(names))
                    new = await conn.fetchrow(
                        f"UPDATE {quote_ident(table)} SET {set_clause} "
                        f"WHERE {quote_ident(pk)} = $1 RETURNING *",  # nosec B608
                        resource_id,
                        *(values[n] for n in names),
                    )
        except asyncpg.UniqueViolationError as e:
            raise _duplicate_error(collection, pk, e) from e
        except _STORE_ERRORS as e:
            logger.warning("postgres update failed on %s: %s", table, e)
            raise StorageError() from e
        return dict(old), dict(new)

    async def delete(self, collection: str, resource_id: str) -> dict[str, Any] | None:
        table, _, pk = self._table(collection)
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"DELETE FROM {quote_ident(table)} WHERE {quote_ident(pk)} = $1 RETURNING *",  # nosec B608
                    resource_id,
                )
        except _STORE_ERRORS as e:
            logger.warning("postgres delete failed on %s: %s", table, e)
            raise StorageError() from e
        return dict(row) if row else None
