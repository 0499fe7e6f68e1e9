"""
CRUD Kernel — Errors

Every error the kernel raises is a CrudError. The transport layer turns them
into {kind, message} payloads; only SchemaError is fatal, and only at startup.
"""

from __future__ import annotations

from typing import Any


class CrudError(Exception):
    """Base class for errors reported back to the caller."""

    kind = "CrudError"

    def to_payload(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class SchemaError(CrudError):
    """Static collection configuration is invalid."""

    kind = "SchemaError"


class UnknownCollectionError(CrudError):
    """Request names a collection that is not configured."""

    kind = "UnknownCollectionError"


class ValidationError(CrudError):
    """
    Caller input does not match the collection schema.

    `errors` maps each offending field to a message, so the caller sees every
    problem at once rather than the first one.
    """

    kind = "ValidationError"

    def __init__(self, collection: str, errors: dict[str, str]) -> None:
        self.collection = collection
        self.errors = dict(errors)
        detail = ", ".join(f"{name}: {msg}" for name, msg in sorted(self.errors.items()))
        super().__init__(f"Invalid {collection} input ({detail})")

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["fields"] = self.errors
        return payload


class UnknownViewError(CrudError):
    """Requested view is not registered for the collection."""

    kind = "UnknownViewError"

    def __init__(self, collection: str, view: str) -> None:
        self.collection = collection
        self.view = view
        super().__init__(f"View '{view}' is not defined for {collection}")


class MissingParameterError(CrudError):
    """One or more of a view's parameter fields were not supplied."""

    kind = "MissingParameterError"

    def __init__(self, collection: str, view: str, missing: list[str]) -> None:
        self.collection = collection
        self.view = view
        self.missing = sorted(missing)
        super().__init__(f"View '{view}' of {collection} requires: {', '.join(self.missing)}")

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["missing"] = self.missing
        return payload


class ViewTransformError(CrudError):
    """A view transform returned something other than a refinement of its base query."""

    kind = "ViewTransformError"


class AccessDenied(CrudError):
    """A pre or post filter rejected the operation."""

    kind = "AccessDenied"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["reason"] = self.reason
        return payload


class NotFoundError(CrudError):
    """Resource does not exist in the store."""

    kind = "NotFoundError"


class StorageError(CrudError):
    """The external store failed. Message is deliberately opaque."""

    kind = "StorageError"

    def __init__(self, message: str = "Storage operation failed") -> None:
        super().__init__(message)
