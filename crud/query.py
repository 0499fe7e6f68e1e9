"""
CRUD Kernel — Query Builder

An immutable, store-agnostic query: a collection, AND-ed conditions, an
ordering and a page window. Views refine queries with where/order_by/limit;
stores execute them, either in memory (apply_query) or as SQL (compile_select).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

OPERATORS: dict[str, str] = {
    "eq": "=",
    "ne": "<>",
    "lt": "<",
    "le": "<=",
    "gt": ">",
    "ge": ">=",
}


@dataclass(frozen=True)
class Condition:
    """`field <op> value`."""

    field: str
    op: str
    value: Any

    def matches(self, resource: dict[str, Any]) -> bool:
        actual = resource.get(self.field)
        if self.op == "eq":
            return actual == self.value
        if self.op == "ne":
            return actual != self.value
        # Ordered comparisons never match a missing value.
        if actual is None or self.value is None:
            return False
        try:
            if self.op == "lt":
                return actual < self.value
            if self.op == "le":
                return actual <= self.value
            if self.op == "gt":
                return actual > self.value
            if self.op == "ge":
                return actual >= self.value
        except TypeError:
            return False
        raise ValueError(f"Unknown operator: {self.op}")


@dataclass(frozen=True)
class Ordering:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Query:
    """
    Opaque query value handed to view transforms.

    Only refinement primitives are exposed:
      where()     — add a condition, AND-ed after the existing ones
      order_by()  — replace the ordering (the collection default included)
      limit()     — shrink the page size; never grows it
    """

    collection: str
    primary_key: str = "id"
    conditions: tuple[Condition, ...] = ()
    ordering: tuple[Ordering, ...] = ()
    page_size: int = 5
    offset: int = 0
    default_ordering: bool = field(default=True, compare=False)

    @classmethod
    def base(cls, collection: str, primary_key: str = "id", page_size: int = 5, offset: int = 0) -> Query:
        """The unfiltered, default-ordered query over a whole collection."""
        return cls(
            collection=collection,
            primary_key=primary_key,
            ordering=(Ordering(primary_key),),
            page_size=page_size,
            offset=offset,
        )

    def where(self, field_name: str, op: str, value: Any) -> Query:
        if op not in OPERATORS:
            raise ValueError(f"Unknown operator: {op}")
        return replace(self, conditions=(*self.conditions, Condition(field_name, op, value)))

    def eq(self, field_name: str, value: Any) -> Query:
        return self.where(field_name, "eq", value)

    def order_by(self, *fields: str) -> Query:
        """Order by one or more fields; prefix a name with '-' for descending."""
        if not fields:
            raise ValueError("order_by() needs at least one field")
        ordering = tuple(Ordering(f[1:], True) if f.startswith("-") else Ordering(f) for f in fields)
        return replace(self, ordering=ordering, default_ordering=False)

    def limit(self, n: int) -> Query:
        if n < 1:
            raise ValueError("limit must be at least 1")
        return replace(self, page_size=min(self.page_size, n))

    def page(self, page_size: int, offset: int) -> Query:
        """Set the page window. Used by the kernel, not by transforms."""
        return replace(self, page_size=page_size, offset=offset)

    @property
    def sort_keys(self) -> tuple[Ordering, ...]:
        """Ordering with the primary key appended as the final tie-break."""
        if any(o.field == self.primary_key for o in self.ordering):
            return self.ordering
        return (*self.ordering, Ordering(self.primary_key))

    @property
    def fields(self) -> set[str]:
        """Every field the query references."""
        return {c.field for c in self.conditions} | {o.field for o in self.ordering}

    def matches(self, resource: dict[str, Any]) -> bool:
        return all(c.matches(resource) for c in self.conditions)


# ---------------------------------------------------------------------------
# In-memory evaluation
# ---------------------------------------------------------------------------


def apply_filter(query: Query, resources: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [r for r in resources if query.matches(r)]


def apply_sort(query: Query, resources: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Stable multi-key sort. Missing values sort first, like NULLS FIRST."""
    ordered = list(resources)
    for key in reversed(query.sort_keys):
        ordered.sort(
            key=lambda r, f=key.field: (r.get(f) is not None, r.get(f) if r.get(f) is not None else 0),
            reverse=key.descending,
        )
    return ordered


def apply_query(query: Query, resources: Iterable[dict[str, Any]], paginate: bool = True) -> list[dict[str, Any]]:
    """Filter, sort and (optionally) slice `resources` the way a store would."""
    result = apply_sort(query, apply_filter(query, resources))
    if paginate:
        result = result[query.offset : query.offset + query.page_size]
    return result


# ---------------------------------------------------------------------------
# SQL compilation (Postgres, asyncpg placeholders)
# ---------------------------------------------------------------------------


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _where_clause(query: Query, args: list[Any], columns: Sequence[str]) -> str:
    parts = []
    for c in query.conditions:
        if c.field not in columns:
            raise ValueError(f"Unknown column: {c.field}")
        if c.value is None and c.op in ("eq", "ne"):
            parts.append(f"{quote_ident(c.field)} IS {'NOT ' if c.op == 'ne' else ''}NULL")
            continue
        args.append(c.value)
        parts.append(f"{quote_ident(c.field)} {OPERATORS[c.op]} ${len(args)}")
    return f" WHERE {' AND '.join(parts)}" if parts else ""


def compile_select(query: Query, table: str, columns: Sequence[str]) -> tuple[str, list[Any]]:
    """
    Compile a query to a parameterised SELECT.

    Identifiers come from the schema (`columns`) and are quoted; values are
    always bound as $n parameters.
    """
    args: list[Any] = []
    sql = f"SELECT * FROM {quote_ident(table)}" + _where_clause(query, args, columns)

    order_parts = []
    for o in query.sort_keys:
        if o.field not in columns:
            raise ValueError(f"Unknown column: {o.field}")
        direction = "DESC NULLS LAST" if o.descending else "ASC NULLS FIRST"
        order_parts.append(f"{quote_ident(o.field)} {direction}")
    sql += " ORDER BY " + ", ".join(order_parts)

    args.append(query.page_size)
    sql += f" LIMIT ${len(args)}"
    args.append(query.offset)
    sql += f" OFFSET ${len(args)}"
    return sql, args


def compile_count(query: Query, table: str, columns: Sequence[str]) -> tuple[str, list[Any]]:
    args: list[Any] = []
    sql = f"SELECT count(*) FROM {quote_ident(table)}" + _where_clause(query, args, columns)
    return sql, args
