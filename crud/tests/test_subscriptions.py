"""
Subscription tests.

Which mutations reach which subscribers, and that every push re-runs the
access filters with the subscriber's current identity.
"""

import pytest
from kernel_doubles import FakeSession, make_ctx

from crud.errors import ValidationError
from crud.filters import UNAUTHENTICATED
from crud.subscriptions import Subscription, SubscriptionRegistry, changed_fields


async def subscribe(dispatcher, session, collection, **kwargs):
    return await dispatcher.dispatch(session, make_ctx(collection, "subscribe", session.identity, **kwargs))


async def mutate(dispatcher, session, collection, action, **kwargs):
    return await dispatcher.dispatch(session, make_ctx(collection, action, session.identity, **kwargs))


# ============================================================================
# Subscribe
# ============================================================================


class TestSubscribe:
    async def test_view_subscription_returns_first_page(self, dispatcher, session, seeded):
        result = await subscribe(dispatcher, session, "Product", view="categoryView", params={"category": "c1"})

        assert result["channel"] == 'crud>categoryView({"category":"c1"}):Product'
        assert [r["name"] for r in result["data"]["data"]] == ["Galaxy", "Moto", "Nokia", "Pixel"]
        assert len(dispatcher.subscriptions) == 1

    async def test_resource_subscription(self, dispatcher, session, seeded):
        result = await subscribe(dispatcher, session, "Product", resource_id="p1")
        assert result["channel"] == "crud>Product/p1"
        assert result["data"]["name"] == "Pixel"

    async def test_needs_a_session(self, dispatcher, alice):
        with pytest.raises(ValidationError):
            await dispatcher.dispatch(None, make_ctx("Category", "subscribe", alice))

    async def test_single_field_or_view_with_id_is_rejected(self, dispatcher, session, seeded):
        with pytest.raises(ValidationError):
            await subscribe(dispatcher, session, "Product", resource_id="p1", field_name="qty")
        with pytest.raises(ValidationError):
            await subscribe(dispatcher, session, "Product", resource_id="p1", view="categoryView")
        assert len(dispatcher.subscriptions) == 0

    async def test_same_channel_replaces(self, dispatcher, session, seeded):
        await subscribe(dispatcher, session, "Category")
        await subscribe(dispatcher, session, "Category")
        assert len(dispatcher.subscriptions) == 1

    async def test_unsubscribe(self, dispatcher, session, seeded):
        result = await subscribe(dispatcher, session, "Category")
        assert await dispatcher.unsubscribe(session, result["channel"]) is True
        assert await dispatcher.unsubscribe(session, result["channel"]) is False
        assert len(dispatcher.subscriptions) == 0

    async def test_drop_session(self, dispatcher, session, alice, seeded):
        other = FakeSession("s2", identity=alice)
        await subscribe(dispatcher, session, "Category")
        await subscribe(dispatcher, session, "Product", resource_id="p1")
        await subscribe(dispatcher, other, "Category")

        assert dispatcher.drop_session(session) == 2
        assert len(dispatcher.subscriptions) == 1
        assert dispatcher.subscriptions.for_session(other)[0].channel == "crud>Category"


# ============================================================================
# Invalidation
# ============================================================================


class TestInvalidation:
    async def test_create_in_partition_pushes(self, dispatcher, session, seeded):
        await subscribe(dispatcher, session, "Product", view="categoryView", params={"category": "c1"})

        await mutate(dispatcher, session, "Product", "create", value={"name": "Huawei", "category": "c1"})

        pushes = session.of_type("crud.publish")
        assert len(pushes) == 1
        assert [r["name"] for r in pushes[0]["data"]["data"]] == ["Galaxy", "Huawei", "Moto", "Nokia", "Pixel"]

    async def test_create_in_other_partition_does_not_push(self, dispatcher, session, seeded):
        await subscribe(dispatcher, session, "Product", view="categoryView", params={"category": "c1"})
        await mutate(dispatcher, session, "Product", "create", value={"name": "Mac", "category": "c2"})
        assert session.of_type("crud.publish") == []

    async def test_move_between_partitions_pushes_both(self, dispatcher, session, alice, seeded):
        other = FakeSession("s2", identity=alice)
        await subscribe(dispatcher, session, "Product", view="categoryView", params={"category": "c1"})
        await subscribe(dispatcher, other, "Product", view="categoryView", params={"category": "c2"})

        await mutate(dispatcher, session, "Product", "update", resource_id="p1", value={"category": "c2"})

        assert "p1" not in [r["id"] for r in session.of_type("crud.publish")[0]["data"]["data"]]
        assert "p1" in [r["id"] for r in other.of_type("crud.publish")[0]["data"]["data"]]

    async def test_unrelated_field_change_outside_page_does_not_push(self, dispatcher, session, seeded):
        await subscribe(
            dispatcher, session, "Product", view="categoryView", params={"category": "c1"}, page_size=2
        )
        # p3 (Nokia) is third by name, so not on the first page; desc is not an affecting field
        await mutate(dispatcher, session, "Product", "update", resource_id="p3", value={"desc": "old"})
        assert session.of_type("crud.publish") == []

    async def test_affecting_field_change_pushes(self, dispatcher, session, seeded):
        await subscribe(
            dispatcher, session, "Product", view="categoryView", params={"category": "c1"}, page_size=2
        )
        await mutate(dispatcher, session, "Product", "update", resource_id="p3", value={"name": "Alcatel"})

        pushes = session.of_type("crud.publish")
        assert [r["name"] for r in pushes[0]["data"]["data"]] == ["Alcatel", "Galaxy"]

    async def test_change_to_resource_on_page_pushes(self, dispatcher, session, seeded):
        await subscribe(
            dispatcher, session, "Product", view="categoryView", params={"category": "c1"}, page_size=2
        )
        await mutate(dispatcher, session, "Product", "update", resource_id="p2", value={"desc": "new"})

        pushes = session.of_type("crud.publish")
        assert pushes[0]["data"]["data"][0]["desc"] == "new"

    async def test_collection_subscription_on_create_and_delete(self, dispatcher, session, seeded):
        await subscribe(dispatcher, session, "Category")

        created = await mutate(dispatcher, session, "Category", "create", value={"name": "Tablets"})
        await mutate(dispatcher, session, "Category", "delete", resource_id=created["id"])

        assert len(session.of_type("crud.publish")) == 2

    async def test_resource_subscription_sees_update_and_delete(self, dispatcher, session, seeded):
        await subscribe(dispatcher, session, "Product", resource_id="p1")

        await mutate(dispatcher, session, "Product", "update", resource_id="p1", field_name="qty", value=1)
        await mutate(dispatcher, session, "Product", "update", resource_id="p2", field_name="qty", value=1)
        await mutate(dispatcher, session, "Product", "delete", resource_id="p1")

        pushes = session.of_type("crud.publish")
        assert [p["channel"] for p in pushes] == ["crud>Product/p1", "crud>Product/p1"]
        assert pushes[0]["data"]["qty"] == 1
        assert pushes[1]["data"] is None

    async def test_other_collection_is_ignored(self, dispatcher, session, seeded):
        await subscribe(dispatcher, session, "Category")
        await mutate(dispatcher, session, "Product", "create", value={"name": "X", "category": "c1"})
        assert session.sent == []

    async def test_lowstock_partition_is_category(self, dispatcher, session, alice, seeded):
        other = FakeSession("s2", identity=alice)
        await subscribe(dispatcher, session, "Product", view="lowStockView", params={"category": "c1", "qty": 3})
        await subscribe(dispatcher, other, "Product", view="lowStockView", params={"category": "c1", "qty": 50})

        await mutate(dispatcher, session, "Product", "create", value={"name": "Nexus", "qty": 1, "category": "c1"})

        # Each subscriber re-runs its own query on the shared channel.
        mine = [r["name"] for r in session.of_type("crud.publish")[0]["data"]["data"]]
        theirs = other.of_type("crud.publish")[0]["data"]
        assert mine == ["Nexus", "Nokia"]
        assert len(theirs["data"]) == 5
        assert theirs["is_last_page"] is True


# ============================================================================
# Push revalidation
# ============================================================================


class TestPushRevalidation:
    async def test_logged_out_subscriber_is_revoked(self, dispatcher, session, alice, seeded):
        watcher = FakeSession("s2", identity=alice)
        await subscribe(dispatcher, watcher, "Category")
        watcher.identity = None

        await mutate(dispatcher, session, "Category", "create", value={"name": "Tablets"})

        errors = watcher.of_type("crud.error")
        assert errors[0]["channel"] == "crud>Category"
        assert errors[0]["error"]["reason"] == UNAUTHENTICATED
        assert watcher.reauth_requests == 1
        assert watcher.of_type("crud.publish") == []
        assert dispatcher.subscriptions.for_session(watcher) == []

    async def test_push_is_redacted(self, dispatcher, session, store):
        await store.insert("User", {"id": "u1", "username": "alice", "password": "hash"})
        await subscribe(dispatcher, session, "User", resource_id="u1")

        await mutate(dispatcher, session, "User", "update", resource_id="u1", value={"username": "alicia"})

        pushed = session.of_type("crud.publish")[0]["data"]
        assert pushed == {"id": "u1", "username": "alicia"}

    async def test_broken_session_is_dropped(self, dispatcher, session, alice, seeded):
        class Broken(FakeSession):
            async def send(self, message):
                raise ConnectionError("gone")

        broken = Broken("s3", identity=alice)
        await subscribe(dispatcher, broken, "Category")

        await mutate(dispatcher, session, "Category", "create", value={"name": "Tablets"})

        assert dispatcher.subscriptions.for_session(broken) == []


# ============================================================================
# Registry
# ============================================================================


class TestRegistry:
    def test_changed_fields(self):
        assert changed_fields({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": None}) == {"b"}
        assert changed_fields(None, {"a": 1}) == {"a"}

    def test_affected_by_last_ids(self, session):
        registry = SubscriptionRegistry()
        sub = Subscription(
            channel="crud>Category",
            session=session,
            ctx=make_ctx("Category", "subscribe"),
            last_ids={"c1"},
        )
        registry.add(sub)

        old = {"id": "c1", "name": "A"}
        assert registry.affected("Category", "update", old, {"id": "c1", "name": "B"}) == [sub]
        assert registry.affected("Category", "update", {"id": "c9"}, {"id": "c9", "name": "B"}) == []
        assert registry.affected("Category", "create", None, {"id": "c9"}) == [sub]

    def test_discard_only_removes_same_record(self, session):
        registry = SubscriptionRegistry()
        first = Subscription(channel="crud>Category", session=session, ctx=make_ctx("Category", "subscribe"))
        second = Subscription(channel="crud>Category", session=session, ctx=make_ctx("Category", "subscribe"))
        registry.add(first)
        registry.add(second)

        registry.discard(first)

        assert registry.for_session(session) == [second]
