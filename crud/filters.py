"""
CRUD Kernel — Access Filter Chain

Each collection may declare a FilterPair:
  pre   — decides whether an operation may touch the store at all
  post  — inspects (and may redact) each fetched resource before it is returned

Filters are pure: they read the request context (and the resource) and
return a Decision. Side effects such as telling the session to
re-authenticate belong to the dispatcher.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from crud.errors import SchemaError
from crud.types import RequestContext

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "Unauthenticated"
IDENTITY_CHANGED = "IdentityChanged"


@dataclass(frozen=True)
class Decision:
    """
    Outcome of a filter.

    For post filters `resource` may carry a replacement resource; when it is
    None the (possibly mutated) copy handed to the filter is used.
    """

    allowed: bool
    reason: str | None = None
    resource: dict[str, Any] | None = None

    @classmethod
    def allow(cls, resource: dict[str, Any] | None = None) -> Decision:
        return cls(True, None, resource)

    @classmethod
    def deny(cls, reason: str) -> Decision:
        return cls(False, reason)


ALLOW = Decision.allow()


class PreFilter:
    """Runs before any store access."""

    def evaluate(self, ctx: RequestContext) -> Decision:
        raise NotImplementedError


class PostFilter:
    """Runs on each fetched resource of a read, before it reaches the caller."""

    def evaluate(self, ctx: RequestContext, resource: dict[str, Any]) -> Decision:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Filter library
# ---------------------------------------------------------------------------


class MustBeLoggedIn(PreFilter):
    """Deny unless the caller carries an identity that has not expired."""

    def evaluate(self, ctx: RequestContext) -> Decision:
        if ctx.is_authenticated:
            return ALLOW
        return Decision.deny(UNAUTHENTICATED)


class AllOf(PreFilter):
    """Runs filters in order; the first deny wins."""

    def __init__(self, *filters: PreFilter) -> None:
        self.filters = filters

    def evaluate(self, ctx: RequestContext) -> Decision:
        for f in self.filters:
            decision = f.evaluate(ctx)
            if not decision.allowed:
                return decision
        return ALLOW


class PassThrough(PostFilter):
    """Allows every resource unchanged. A placeholder to extend per collection."""

    def evaluate(self, ctx: RequestContext, resource: dict[str, Any]) -> Decision:
        return ALLOW


class RedactFields(PostFilter):
    """Removes the named fields from every resource returned."""

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = tuple(fields)

    def evaluate(self, ctx: RequestContext, resource: dict[str, Any]) -> Decision:
        return Decision.allow({k: v for k, v in resource.items() if k not in self.fields})


@dataclass(frozen=True)
class FilterPair:
    pre: PreFilter | None = None
    post: PostFilter | None = None

    def __post_init__(self) -> None:
        if self.post is not None and self.pre is None:
            raise SchemaError("A post filter requires a pre filter")


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------


class AccessFilterChain:
    """Filter pairs per collection. Collections without one allow everything."""

    def __init__(self) -> None:
        self._pairs: dict[str, FilterPair] = {}
        self._primary_keys: dict[str, str] = {}

    def register(self, collection: str, pair: FilterPair, primary_key: str = "id") -> None:
        if collection in self._pairs:
            raise SchemaError(f"Filters for '{collection}' are already registered")
        if isinstance(pair.post, RedactFields) and primary_key in pair.post.fields:
            raise SchemaError(f"{collection}: the primary key '{primary_key}' cannot be redacted")
        self._pairs[collection] = pair
        self._primary_keys[collection] = primary_key

    def get(self, collection: str) -> FilterPair:
        return self._pairs.get(collection, FilterPair())

    def check_pre(self, ctx: RequestContext) -> Decision:
        pair = self.get(ctx.collection)
        if pair.pre is None:
            return ALLOW
        return pair.pre.evaluate(ctx)

    def check_post(self, ctx: RequestContext, resource: dict[str, Any]) -> Decision:
        """
        Run the post filter on a copy of `resource`.

        The returned Decision always carries the resource to hand back. A
        filter that changes the primary key is treated as a deny.
        """
        pair = self.get(ctx.collection)
        if pair.post is None:
            return Decision.allow(resource)

        candidate = dict(resource)
        decision = pair.post.evaluate(ctx, candidate)
        if not decision.allowed:
            return decision

        result = decision.resource if decision.resource is not None else candidate
        pk = self._primary_keys.get(ctx.collection, "id")
        if result.get(pk) != resource.get(pk):
            logger.error("post filter for %s changed the identity of %r", ctx.collection, resource.get(pk))
            return Decision.deny(IDENTITY_CHANGED)
        return Decision.allow(result)
