"""
CRUD Kernel — Subscriptions

Live reads registered against a session. Each record keeps the request and
the resolved query so the dispatcher can re-run the whole read pipeline
(filters included) every time a mutation touches the subscription.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from crud.query import Query
from crud.types import RequestContext, Session
from crud.views import ViewDefinition, view_channel


@dataclass
class Subscription:
    channel: str
    session: Session
    ctx: RequestContext
    query: Query | None = None
    definition: ViewDefinition | None = None
    resource_id: str | None = None
    # Primary keys of the resources in the last page pushed to the subscriber.
    last_ids: set[Any] = field(default_factory=set)

    @property
    def collection(self) -> str:
        return self.ctx.collection

    @property
    def key(self) -> tuple[str, str]:
        return (self.session.session_id, self.channel)


def changed_fields(old: dict[str, Any] | None, new: dict[str, Any] | None) -> set[str]:
    old = old or {}
    new = new or {}
    return {k for k in old.keys() | new.keys() if old.get(k) != new.get(k)}


class SubscriptionRegistry:
    """
    Subscriptions grouped by collection.

    Only touched from the event loop and never across an await, so no lock.
    """

    def __init__(self) -> None:
        self._subs: dict[str, dict[tuple[str, str], Subscription]] = {}

    def add(self, sub: Subscription) -> None:
        """Register a subscription, replacing the session's previous one on the same channel."""
        self._subs.setdefault(sub.collection, {})[sub.key] = sub

    def remove(self, session: Session, channel: str) -> bool:
        key = (session.session_id, channel)
        for subs in self._subs.values():
            if subs.pop(key, None) is not None:
                return True
        return False

    def discard(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.collection, {})
        if subs.get(sub.key) is sub:
            del subs[sub.key]

    def drop_session(self, session: Session) -> int:
        """Forget every subscription of a session. Returns how many were removed."""
        removed = 0
        for subs in self._subs.values():
            for key in [k for k in subs if k[0] == session.session_id]:
                del subs[key]
                removed += 1
        return removed

    def for_session(self, session: Session) -> list[Subscription]:
        return [s for subs in self._subs.values() for s in subs.values() if s.session is session]

    def __len__(self) -> int:
        return sum(len(subs) for subs in self._subs.values())

    def affected(
        self,
        collection: str,
        kind: str,
        old: dict[str, Any] | None,
        new: dict[str, Any] | None,
        primary_key: str = "id",
    ) -> list[Subscription]:
        """
        Subscriptions that must be re-evaluated after a mutation.

        kind is "create", "update" or "delete"; old/new are the resource
        before and after (None where it did not exist).
        """
        resource = new if new is not None else old
        resource_id = resource.get(primary_key) if resource else None
        changed = changed_fields(old, new)

        result = []
        for sub in list(self._subs.get(collection, {}).values()):
            if sub.resource_id is not None:
                if sub.resource_id == resource_id:
                    result.append(sub)
                continue
            if resource_id in sub.last_ids:
                result.append(sub)
                continue
            if sub.definition is None:
                if kind != "update":
                    result.append(sub)
                continue
            channels = {view_channel(collection, sub.definition, v) for v in (old, new) if v is not None}
            if sub.channel in channels and (kind != "update" or sub.definition.is_affected_by(changed)):
                result.append(sub)
        return result
