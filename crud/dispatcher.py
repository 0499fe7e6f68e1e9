"""
CRUD Kernel — Dispatcher

Entry point for every CRUD operation:

  create/update/delete:  validate → pre filter → store mutation → publish
  read/subscribe:        pre filter → resolve view → store query → post filter

Nothing reaches the store until validation, the pre filter and view
resolution have all passed. Store failures surface as StorageError.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
from typing import Any, TypeVar

from crud.collections import Catalog
from crud.errors import (
    AccessDenied,
    CrudError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from crud.filters import UNAUTHENTICATED
from crud.query import Query
from crud.store import Store
from crud.subscriptions import Subscription, SubscriptionRegistry
from crud.types import ACTIONS, RequestContext, Session, now_utc
from crud.views import resource_channel

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sync or async.
WriteHook = Callable[[dict[str, Any]], dict[str, Any] | Awaitable[dict[str, Any]]]


class CrudDispatcher:
    """
    Runs CRUD operations against a store using the catalog's registries.

    The catalog is read-only and shared by every request; the only mutable
    state is the subscription registry.
    """

    def __init__(
        self,
        catalog: Catalog,
        store: Store,
        write_hooks: Mapping[str, WriteHook] | None = None,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.write_hooks = dict(write_hooks or {})
        self.subscriptions = SubscriptionRegistry()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def dispatch(self, session: Session | None, ctx: RequestContext) -> Any:
        """
        Run one operation and return its result payload.

        Raises:
            CrudError subclasses, already shaped for the caller
        """
        if ctx.action not in ACTIONS:
            raise ValidationError(ctx.collection, {"action": f"unknown action '{ctx.action}'"})
        self.catalog.schemas.get(ctx.collection)

        handler = getattr(self, f"_{ctx.action}")
        return await handler(session, ctx)

    async def unsubscribe(self, session: Session, channel: str) -> bool:
        removed = self.subscriptions.remove(session, channel)
        if removed:
            logger.debug("session %s unsubscribed from %s", session.session_id, channel)
        return removed

    def drop_session(self, session: Session) -> int:
        """Called by the transport when a session ends."""
        removed = self.subscriptions.drop_session(session)
        if removed:
            logger.info("dropped %d subscriptions for session %s", removed, session.session_id)
        return removed

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _create(self, session: Session | None, ctx: RequestContext) -> dict[str, Any]:
        schema = self.catalog.schemas.get(ctx.collection)
        values = self.catalog.schemas.validate(ctx.collection, self._object_value(ctx))
        await self._guard(session, ctx)

        pk = schema.primary_key
        # An empty id could never be addressed again.
        if not values.get(pk):
            values[pk] = uuid.uuid4().hex
        values = await self._before_write(ctx.collection, values)

        created = await self._run(self.store.insert(ctx.collection, values))
        logger.info("created %s %s", ctx.collection, created[pk])
        await self._publish(ctx.collection, "create", None, created)
        return {"id": created[pk]}

    async def _update(self, session: Session | None, ctx: RequestContext) -> dict[str, Any]:
        schema = self.catalog.schemas.get(ctx.collection)
        pk = schema.primary_key
        resource_id = self._require_id(ctx)

        if ctx.field_name is not None:
            if not schema.has_field(ctx.field_name):
                raise ValidationError(ctx.collection, {ctx.field_name: "unknown field"})
            raw = {ctx.field_name: ctx.value}
        else:
            raw = self._object_value(ctx)

        if pk in raw and raw[pk] != resource_id:
            raise ValidationError(ctx.collection, {pk: "primary key cannot be changed"})
        values = self.catalog.schemas.validate(ctx.collection, raw, partial=True)
        values.pop(pk, None)
        if not values:
            raise ValidationError(ctx.collection, {"value": "no known fields to update"})

        await self._guard(session, ctx)
        values = await self._before_write(ctx.collection, values)

        result = await self._run(self.store.update(ctx.collection, resource_id, values))
        if result is None:
            raise NotFoundError(f"{ctx.collection} '{resource_id}' not found")
        old, new = result
        logger.info("updated %s %s fields=%s", ctx.collection, resource_id, sorted(values))
        await self._publish(ctx.collection, "update", old, new)
        return {"id": resource_id}

    async def _delete(self, session: Session | None, ctx: RequestContext) -> dict[str, Any]:
        schema = self.catalog.schemas.get(ctx.collection)
        resource_id = self._require_id(ctx)

        if ctx.field_name is not None:
            field_def = schema.get(ctx.field_name)
            if field_def is None:
                raise ValidationError(ctx.collection, {ctx.field_name: "unknown field"})
            if not field_def.optional or ctx.field_name == schema.primary_key:
                raise ValidationError(ctx.collection, {ctx.field_name: "required field cannot be deleted"})
            await self._guard(session, ctx)

            result = await self._run(self.store.update(ctx.collection, resource_id, {ctx.field_name: None}))
            if result is None:
                raise NotFoundError(f"{ctx.collection} '{resource_id}' not found")
            old, new = result
            await self._publish(ctx.collection, "update", old, new)
            return {"id": resource_id}

        await self._guard(session, ctx)
        deleted = await self._run(self.store.delete(ctx.collection, resource_id))
        if deleted is None:
            raise NotFoundError(f"{ctx.collection} '{resource_id}' not found")
        logger.info("deleted %s %s", ctx.collection, resource_id)
        await self._publish(ctx.collection, "delete", deleted, None)
        return {"id": resource_id}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _read(self, session: Session | None, ctx: RequestContext) -> Any:
        self._check_read_target(ctx)
        await self._guard(session, ctx)

        if ctx.resource_id is not None:
            resource = await self._read_one(ctx)
            if ctx.field_name is not None:
                return resource.get(ctx.field_name)
            return resource

        resolved = self.catalog.views.resolve(
            ctx.collection, ctx.view, ctx.params, page_size=ctx.page_size, offset=ctx.offset
        )
        page, _ = await self._read_page(ctx, resolved.query)
        return page

    async def _subscribe(self, session: Session | None, ctx: RequestContext) -> dict[str, Any]:
        if session is None:
            raise ValidationError(ctx.collection, {"action": "subscribe needs a session"})
        self._check_read_target(ctx)
        if ctx.field_name is not None:
            raise ValidationError(ctx.collection, {"field": "cannot subscribe to a single field"})
        await self._guard(session, ctx)

        if ctx.resource_id is not None:
            data = await self._read_one(ctx)
            sub = Subscription(
                channel=resource_channel(ctx.collection, ctx.resource_id),
                session=session,
                ctx=ctx,
                resource_id=ctx.resource_id,
            )
        else:
            resolved = self.catalog.views.resolve(
                ctx.collection, ctx.view, ctx.params, page_size=ctx.page_size, offset=ctx.offset
            )
            data, ids = await self._read_page(ctx, resolved.query)
            sub = Subscription(
                channel=resolved.channel,
                session=session,
                ctx=ctx,
                query=resolved.query,
                definition=resolved.definition,
                last_ids=ids,
            )

        self.subscriptions.add(sub)
        logger.info("session %s subscribed to %s", session.session_id, sub.channel)
        return {"channel": sub.channel, "data": data}

    async def _read_one(self, ctx: RequestContext) -> dict[str, Any]:
        schema = self.catalog.schemas.get(ctx.collection)
        if ctx.field_name is not None and not schema.has_field(ctx.field_name):
            raise ValidationError(ctx.collection, {ctx.field_name: "unknown field"})

        resource = await self._run(self.store.get(ctx.collection, ctx.resource_id))
        if resource is None:
            raise NotFoundError(f"{ctx.collection} '{ctx.resource_id}' not found")

        decision = self.catalog.filters.check_post(ctx, resource)
        if not decision.allowed:
            raise AccessDenied(decision.reason or "Denied")
        return decision.resource

    async def _read_page(self, ctx: RequestContext, query: Query) -> tuple[dict[str, Any], set[Any]]:
        """Fetch one page, run the post filter per resource, drop denied ones."""
        pk = query.primary_key
        # One extra row tells us whether this is the last page.
        rows = await self._run(self.store.fetch(query.page(query.page_size + 1, query.offset)))
        is_last_page = len(rows) <= query.page_size
        rows = rows[: query.page_size]

        data = []
        for row in rows:
            decision = self.catalog.filters.check_post(ctx, row)
            if decision.allowed:
                data.append(decision.resource)
            else:
                logger.debug("post filter hid %s %s: %s", ctx.collection, row.get(pk), decision.reason)

        page: dict[str, Any] = {"data": data, "is_last_page": is_last_page}
        if ctx.get_count:
            page["count"] = await self._run(self.store.count(query))
        return page, {row.get(pk) for row in rows}

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def _publish(
        self,
        collection: str,
        kind: str,
        old: dict[str, Any] | None,
        new: dict[str, Any] | None,
    ) -> None:
        pk = self.catalog.schemas.get(collection).primary_key
        subs = self.subscriptions.affected(collection, kind, old, new, primary_key=pk)
        if subs:
            await asyncio.gather(*(self._push(sub) for sub in subs))

    async def _push(self, sub: Subscription) -> None:
        """
        Re-evaluate a subscription and send the result.

        The pre and post filters run again with the session's current
        identity; a pre-filter deny ends the subscription.
        """
        session = sub.session
        ctx = replace(sub.ctx, identity=session.identity, received_at=now_utc())
        try:
            decision = self.catalog.filters.check_pre(ctx)
            if not decision.allowed:
                self.subscriptions.discard(sub)
                error = AccessDenied(decision.reason or "Denied")
                await session.send({"type": "crud.error", "channel": sub.channel, "error": error.to_payload()})
                if decision.reason == UNAUTHENTICATED:
                    await session.request_reauth()
                logger.info("subscription %s revoked for session %s", sub.channel, session.session_id)
                return

            if sub.resource_id is not None:
                try:
                    data: Any = await self._read_one(ctx)
                except NotFoundError:
                    data = None
            else:
                data, sub.last_ids = await self._read_page(ctx, sub.query)

            await session.send({"type": "crud.publish", "channel": sub.channel, "data": data})
        except CrudError as e:
            logger.warning("push to %s failed: %s", sub.channel, e)
            try:
                await session.send({"type": "crud.error", "channel": sub.channel, "error": e.to_payload()})
            except Exception:
                self.subscriptions.discard(sub)
                logger.debug("dropping subscription %s after send failure", sub.channel, exc_info=True)
        except Exception:
            # The session is gone or broken; the transport cleans up the rest.
            self.subscriptions.discard(sub)
            logger.warning("dropping subscription %s after send failure", sub.channel, exc_info=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _guard(self, session: Session | None, ctx: RequestContext) -> None:
        """Run the pre filter; on deny signal re-authentication and raise."""
        decision = self.catalog.filters.check_pre(ctx)
        if decision.allowed:
            return
        logger.info("pre filter denied %s %s: %s", ctx.action, ctx.collection, decision.reason)
        if decision.reason == UNAUTHENTICATED and session is not None:
            await session.request_reauth()
        raise AccessDenied(decision.reason or "Denied")

    async def _run(self, op: Awaitable[T]) -> T:
        """Await a store call, hiding anything unexpected behind StorageError."""
        try:
            return await op
        except CrudError:
            raise
        except Exception as e:
            logger.exception("store call failed")
            raise StorageError() from e

    async def _before_write(self, collection: str, values: dict[str, Any]) -> dict[str, Any]:
        hook = self.write_hooks.get(collection)
        if hook is None:
            return values
        result = hook(dict(values))
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def _object_value(ctx: RequestContext) -> Mapping[str, Any]:
        if not isinstance(ctx.value, Mapping):
            raise ValidationError(ctx.collection, {"value": "expected an object"})
        return ctx.value

    @staticmethod
    def _check_read_target(ctx: RequestContext) -> None:
        """A read addresses either one resource (id, optionally field) or a view page."""
        errors: dict[str, str] = {}
        if ctx.field_name is not None and ctx.resource_id is None:
            errors["field"] = "requires an id"
        if ctx.view is not None and ctx.resource_id is not None:
            errors["view"] = "cannot be combined with an id"
        if errors:
            raise ValidationError(ctx.collection, errors)

    @staticmethod
    def _require_id(ctx: RequestContext) -> str:
        if not ctx.resource_id:
            raise ValidationError(ctx.collection, {"id": "required for this action"})
        return ctx.resource_id
