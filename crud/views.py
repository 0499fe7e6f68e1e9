"""
CRUD Kernel — View Resolver

A view is a named, parameterised refinement of a collection's default query.
resolve() validates the caller's parameters, runs the view's transform over
the base query and checks that the result only narrows or reorders it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from crud.errors import (
    MissingParameterError,
    SchemaError,
    UnknownViewError,
    ValidationError,
    ViewTransformError,
)
from crud.query import Query
from crud.schema import SchemaRegistry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


class Transform:
    """Refines a base query using the view's parameter values."""

    def apply(self, query: Query, params: Mapping[str, Any]) -> Query:
        raise NotImplementedError


class FunctionTransform(Transform):
    """Adapts a plain `(query, params) -> query` function."""

    def __init__(self, fn: Callable[[Query, Mapping[str, Any]], Query]) -> None:
        self.fn = fn
        self.__doc__ = fn.__doc__

    def apply(self, query: Query, params: Mapping[str, Any]) -> Query:
        return self.fn(query, params)

    def __repr__(self) -> str:  # pragma: no cover
        return f"FunctionTransform({getattr(self.fn, '__name__', self.fn)!r})"


def transform(fn: Callable[[Query, Mapping[str, Any]], Query]) -> Transform:
    """Decorator turning a function into a Transform."""
    return FunctionTransform(fn)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ViewDefinition:
    """
    param_fields      inputs the transform consumes; all are required
    affecting_fields  fields whose changes can reorder or regroup the view
    primary_keys      subset of param_fields that partitions subscriptions
    """

    name: str
    transform: Transform
    param_fields: tuple[str, ...] = ()
    affecting_fields: tuple[str, ...] = ()
    primary_keys: tuple[str, ...] | None = None

    @property
    def channel_fields(self) -> tuple[str, ...]:
        return self.primary_keys if self.primary_keys is not None else self.param_fields

    def is_affected_by(self, changed: Iterable[str]) -> bool:
        watched = set(self.param_fields) | set(self.affecting_fields)
        return bool(watched.intersection(changed))


def view(
    name: str,
    fn: Transform | Callable[[Query, Mapping[str, Any]], Query],
    param_fields: Iterable[str] = (),
    affecting_fields: Iterable[str] = (),
    primary_keys: Iterable[str] | None = None,
) -> ViewDefinition:
    """Convenience constructor accepting plain functions and lists."""
    return ViewDefinition(
        name=name,
        transform=fn if isinstance(fn, Transform) else FunctionTransform(fn),
        param_fields=tuple(param_fields),
        affecting_fields=tuple(affecting_fields),
        primary_keys=tuple(primary_keys) if primary_keys is not None else None,
    )


@dataclass(frozen=True)
class ResolvedQuery:
    """A store-executable query plus what subscriptions need to track it."""

    collection: str
    query: Query
    channel: str
    view: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    definition: ViewDefinition | None = None


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


def collection_channel(collection: str) -> str:
    return f"crud>{collection}"


def resource_channel(collection: str, resource_id: str) -> str:
    return f"crud>{collection}/{resource_id}"


def view_channel(collection: str, definition: ViewDefinition, values: Mapping[str, Any]) -> str:
    """
    Channel for a view partition, e.g. crud>categoryView({"category":"c1"}):Product

    Only the channel fields (primary keys, else all params) take part, so
    every subscriber to the same partition shares one channel.
    """
    keyed = {name: values.get(name) for name in definition.channel_fields}
    encoded = json.dumps(keyed, sort_keys=True, separators=(",", ":"), default=str)
    return f"crud>{definition.name}({encoded}):{collection}"


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ViewResolver:
    """Named views per collection, read-only once startup has finished."""

    def __init__(self, schemas: SchemaRegistry, default_page_size: int = 5, max_page_size: int = 100) -> None:
        if not 1 <= default_page_size <= max_page_size:
            raise SchemaError("default_page_size must be between 1 and max_page_size")
        self.schemas = schemas
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self._views: dict[str, dict[str, ViewDefinition]] = {}

    def register(self, collection: str, definition: ViewDefinition) -> None:
        """
        Register a view for a collection.

        Raises SchemaError if the collection is unknown, the view name is
        taken, a param/affecting field is not in the schema, or a primary
        key is not one of the param fields.
        """
        if collection not in self.schemas:
            raise SchemaError(f"Cannot add view '{definition.name}' to unknown collection '{collection}'")
        schema = self.schemas.get(collection)
        views = self._views.setdefault(collection, {})
        if definition.name in views:
            raise SchemaError(f"{collection}: view '{definition.name}' is already registered")
        if not isinstance(definition.transform, Transform):
            raise SchemaError(f"{collection}.{definition.name}: transform must be a Transform")

        for name in (*definition.param_fields, *definition.affecting_fields):
            if not schema.has_field(name):
                raise SchemaError(f"{collection}.{definition.name}: unknown field '{name}'")
        if definition.primary_keys is not None:
            extra = set(definition.primary_keys) - set(definition.param_fields)
            if extra:
                raise SchemaError(
                    f"{collection}.{definition.name}: primary keys must be param fields: {', '.join(sorted(extra))}"
                )

        views[definition.name] = definition

    def get(self, collection: str, view_name: str) -> ViewDefinition:
        self.schemas.get(collection)
        try:
            return self._views[collection][view_name]
        except KeyError:
            raise UnknownViewError(collection, view_name) from None

    def views_for(self, collection: str) -> list[ViewDefinition]:
        return list(self._views.get(collection, {}).values())

    def default_query(self, collection: str, page_size: int | None = None, offset: int = 0) -> Query:
        """The collection's unfiltered, primary-key-ordered first page."""
        schema = self.schemas.get(collection)
        size = self._check_page(collection, page_size, offset)
        return Query.base(collection, primary_key=schema.primary_key, page_size=size, offset=offset)

    def resolve(
        self,
        collection: str,
        view_name: str | None,
        params: Mapping[str, Any] | None = None,
        page_size: int | None = None,
        offset: int = 0,
    ) -> ResolvedQuery:
        """
        Compute the concrete query for a view (or the default query when
        view_name is None).

        Raises:
            UnknownCollectionError, UnknownViewError, MissingParameterError,
            ValidationError (bad parameter types or page window),
            ViewTransformError (transform widened the query)
        """
        base = self.default_query(collection, page_size, offset)
        if view_name is None:
            return ResolvedQuery(collection=collection, query=base, channel=collection_channel(collection))

        definition = self.get(collection, view_name)
        supplied = dict(params or {})
        missing = [name for name in definition.param_fields if supplied.get(name) is None]
        if missing:
            raise MissingParameterError(collection, view_name, missing)

        values = self.schemas.validate(
            collection,
            {name: supplied[name] for name in definition.param_fields},
            partial=True,
        )

        try:
            refined = definition.transform.apply(base, dict(values))
        except (KeyError, TypeError, ValueError) as e:
            raise ViewTransformError(f"{collection}.{view_name}: transform failed: {e}") from e

        self._check_refinement(collection, view_name, base, refined)
        logger.debug("resolved %s.%s params=%s", collection, view_name, values)

        return ResolvedQuery(
            collection=collection,
            query=refined,
            channel=view_channel(collection, definition, values),
            view=view_name,
            params=values,
            definition=definition,
        )

    def _check_page(self, collection: str, page_size: int | None, offset: int) -> int:
        errors: dict[str, str] = {}
        size = self.default_page_size if page_size is None else page_size
        if isinstance(size, bool) or not isinstance(size, int) or not 1 <= size <= self.max_page_size:
            errors["page_size"] = f"must be an integer between 1 and {self.max_page_size}"
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            errors["offset"] = "must be a non-negative integer"
        if errors:
            raise ValidationError(collection, errors)
        return size

    def _check_refinement(self, collection: str, view_name: str, base: Query, refined: Any) -> None:
        where = f"{collection}.{view_name}"
        if not isinstance(refined, Query):
            raise ViewTransformError(f"{where}: transform must return a Query")
        if refined.collection != base.collection or refined.primary_key != base.primary_key:
            raise ViewTransformError(f"{where}: transform switched collections")
        if refined.conditions[: len(base.conditions)] != base.conditions:
            raise ViewTransformError(f"{where}: transform dropped base conditions")
        if refined.page_size > base.page_size or refined.offset != base.offset:
            raise ViewTransformError(f"{where}: transform widened the page window")
        schema = self.schemas.get(collection)
        unknown = sorted(f for f in refined.fields if not schema.has_field(f))
        if unknown:
            raise ViewTransformError(f"{where}: transform references unknown fields: {', '.join(unknown)}")
