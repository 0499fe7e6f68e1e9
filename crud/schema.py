"""
CRUD Kernel — Schema Registry

Per-collection field definitions, used to validate and coerce caller input
before anything reaches the store. Validation is pure: same input, same output.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from crud.errors import SchemaError, UnknownCollectionError, ValidationError

FIELD_TYPES: set[str] = {"string", "integer", "float", "boolean"}

DEFAULT_PRIMARY_KEY = "id"

_MISSING = object()


@dataclass(frozen=True)
class FieldDef:
    """One declared field of a collection."""

    name: str
    type: str
    optional: bool = False


def string(name: str, optional: bool = False) -> FieldDef:
    return FieldDef(name, "string", optional)


def integer(name: str, optional: bool = False) -> FieldDef:
    return FieldDef(name, "integer", optional)


def number(name: str, optional: bool = False) -> FieldDef:
    return FieldDef(name, "float", optional)


def boolean(name: str, optional: bool = False) -> FieldDef:
    return FieldDef(name, "boolean", optional)


class CollectionSchema:
    """Ordered, immutable mapping of field name to FieldDef for one collection."""

    def __init__(
        self, name: str, fields: dict[str, FieldDef], primary_key: str, unique: tuple[str, ...] = ()
    ) -> None:
        self.name = name
        self._fields = dict(fields)
        self.primary_key = primary_key
        # Fields, besides the primary key, that no two resources may share.
        self.unique = unique

    @property
    def fields(self) -> Mapping[str, FieldDef]:
        return dict(self._fields)

    @property
    def field_names(self) -> list[str]:
        return list(self._fields)

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def get(self, name: str) -> FieldDef | None:
        return self._fields.get(name)

    def __repr__(self) -> str:  # pragma: no cover
        return f"CollectionSchema({self.name!r}, fields={self.field_names!r})"


class SchemaRegistry:
    """Holds the schema of every configured collection."""

    def __init__(self) -> None:
        self._schemas: dict[str, CollectionSchema] = {}

    def register(
        self,
        collection: str,
        fields: Iterable[FieldDef],
        primary_key: str = DEFAULT_PRIMARY_KEY,
        unique: Iterable[str] = (),
    ) -> CollectionSchema:
        """
        Register a collection's fields.

        Raises SchemaError on an unknown field type, a duplicated field name,
        a non-string primary key, an unknown unique field, or a collection
        registered twice. If the primary key is not declared it is added as
        an optional string field.
        """
        if collection in self._schemas:
            raise SchemaError(f"Collection '{collection}' is already registered")

        declared: dict[str, FieldDef] = {}
        for f in fields:
            if f.type not in FIELD_TYPES:
                raise SchemaError(f"{collection}.{f.name}: unknown field type '{f.type}'")
            if f.name in declared:
                raise SchemaError(f"{collection}.{f.name}: field declared more than once")
            declared[f.name] = f

        if primary_key in declared:
            if declared[primary_key].type != "string":
                raise SchemaError(f"{collection}.{primary_key}: primary key must be a string field")
            # Generated on create when the caller leaves it out.
            declared[primary_key] = FieldDef(primary_key, "string", optional=True)
        else:
            declared = {primary_key: FieldDef(primary_key, "string", optional=True), **declared}

        unique = tuple(unique)
        for name in unique:
            if name not in declared:
                raise SchemaError(f"{collection}.{name}: unique field is not declared")

        schema = CollectionSchema(collection, declared, primary_key, tuple(n for n in unique if n != primary_key))
        self._schemas[collection] = schema
        return schema

    def get(self, collection: str) -> CollectionSchema:
        try:
            return self._schemas[collection]
        except KeyError:
            raise UnknownCollectionError(f"Unknown collection '{collection}'") from None

    def __contains__(self, collection: object) -> bool:
        return collection in self._schemas

    @property
    def collections(self) -> list[str]:
        return list(self._schemas)

    def validate(
        self,
        collection: str,
        values: Mapping[str, Any],
        partial: bool = False,
    ) -> dict[str, Any]:
        """
        Coerce `values` to the collection's declared types.

        Returns only declared fields, in declaration order. With partial=True
        (updates) absent required fields are not reported, but an explicit
        None for a required field still is.

        Raises:
            ValidationError: listing every offending field
        """
        schema = self.get(collection)
        if not isinstance(values, Mapping):
            raise ValidationError(collection, {"*": "expected an object"})

        result: dict[str, Any] = {}
        errors: dict[str, str] = {}

        for name, field_def in schema.fields.items():
            raw = values.get(name, _MISSING)
            if raw is _MISSING:
                if not field_def.optional and not partial:
                    errors[name] = "required field is missing"
                continue
            if raw is None:
                if field_def.optional:
                    result[name] = None
                else:
                    errors[name] = "required field cannot be null"
                continue
            try:
                result[name] = coerce(field_def.type, raw)
            except (TypeError, ValueError):
                errors[name] = f"expected {field_def.type}, got {type(raw).__name__}"

        if errors:
            raise ValidationError(collection, errors)
        return result


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


def coerce(field_type: str, value: Any) -> Any:
    """
    Coerce a single value to a primitive field type.

    Raises ValueError or TypeError when the value cannot be represented.
    """
    coercer = _COERCERS.get(field_type)
    if coercer is None:
        raise TypeError(f"Unknown field type: {field_type}")
    return coercer(value)


def _to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        raise TypeError("boolean is not a string")
    if isinstance(value, (int, float)):
        return str(value)
    raise TypeError(f"cannot convert {type(value).__name__} to string")


def _plain_numeric(value: str) -> str:
    # int() and float() also accept "1_000"
    if "_" in value:
        raise ValueError(f"{value!r} is not a plain number")
    return value.strip()


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("boolean is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value} is not integral")
        return int(value)
    if isinstance(value, str):
        return int(_plain_numeric(value))
    raise TypeError(f"cannot convert {type(value).__name__} to integer")


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("boolean is not a number")
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        result = float(_plain_numeric(value))
    else:
        raise TypeError(f"cannot convert {type(value).__name__} to float")
    if not math.isfinite(result):
        raise ValueError("non-finite numbers are not allowed")
    return result


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ValueError(f"cannot convert {value!r} to boolean")


_COERCERS = {
    "string": _to_string,
    "integer": _to_integer,
    "float": _to_float,
    "boolean": _to_boolean,
}
