"""
Tests for the realtime CRUD WebSocket (/ws/crud).

Within one connection a publish for a mutation arrives before the
crud.result for that mutation, since the dispatcher pushes before it returns.
"""

from __future__ import annotations


def crud(rid, collection, action, **kwargs):
    return {"type": "crud", "rid": rid, "collection": collection, "action": action, **kwargs}


def category_id(ws, name):
    ws.send_json(crud("lookup", "Category", "read", view="alphabeticalView"))
    result = ws.receive_json()
    return next(c["id"] for c in result["data"]["data"] if c["name"] == name)


class TestAnonymous:
    def test_read_requires_login(self, client):
        with client.websocket_connect("/ws/crud") as ws:
            ws.send_json(crud(1, "Category", "read"))

            assert ws.receive_json() == {"type": "logout"}
            error = ws.receive_json()
            assert error["type"] == "crud.error"
            assert error["rid"] == 1
            assert error["error"]["kind"] == "AccessDenied"
            assert error["error"]["reason"] == "Unauthenticated"

    def test_malformed_json(self, client):
        with client.websocket_connect("/ws/crud") as ws:
            ws.send_text("{not json")
            error = ws.receive_json()
            assert error["type"] == "crud.error"
            assert error["error"]["kind"] == "ValidationError"

    def test_malformed_message(self, client):
        with client.websocket_connect("/ws/crud") as ws:
            ws.send_json({"type": "crud", "rid": "r", "collection": "Category", "action": "explode"})
            error = ws.receive_json()
            assert error["rid"] == "r"
            assert error["error"]["kind"] == "ValidationError"
            assert "action" in error["error"]["fields"]


class TestLogin:
    def test_login_message(self, client, credentials):
        with client.websocket_connect("/ws/crud") as ws:
            ws.send_json({"type": "login", **credentials})
            reply = ws.receive_json()
            assert reply["type"] == "login.ok"
            assert reply["username"] == "alice"

            ws.send_json(crud(2, "Category", "read"))
            result = ws.receive_json()
            assert result["type"] == "crud.result"
            assert len(result["data"]["data"]) == 3

    def test_bad_login(self, client, credentials):
        with client.websocket_connect("/ws/crud") as ws:
            ws.send_json({"type": "login", **credentials, "password": "wrong"})
            reply = ws.receive_json()
            assert reply["type"] == "login.error"
            assert reply["error"]["kind"] == "AccessDenied"

    def test_authenticate_with_token(self, client, token):
        with client.websocket_connect("/ws/crud") as ws:
            ws.send_json({"type": "authenticate", "token": token})
            assert ws.receive_json()["type"] == "login.ok"

            ws.send_json({"type": "authenticate", "token": "garbage"})
            assert ws.receive_json()["type"] == "login.error"

    def test_logout_message(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            ws.send_json({"type": "logout"})
            assert ws.receive_json() == {"type": "logout"}

            ws.send_json(crud(3, "Category", "read"))
            assert ws.receive_json() == {"type": "logout"}
            assert ws.receive_json()["error"]["kind"] == "AccessDenied"


class TestCrud:
    def test_create_read_update_delete(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            ws.send_json(crud("c", "Category", "create", value={"name": "Cameras"}))
            created = ws.receive_json()
            assert created["type"] == "crud.result"
            new_id = created["data"]["id"]

            ws.send_json(crud("u", "Category", "update", id=new_id, field="desc", value="Lenses too"))
            assert ws.receive_json()["data"] == {"id": new_id}

            ws.send_json(crud("r", "Category", "read", id=new_id))
            assert ws.receive_json()["data"] == {"id": new_id, "name": "Cameras", "desc": "Lenses too"}

            ws.send_json(crud("d", "Category", "delete", id=new_id))
            assert ws.receive_json()["type"] == "crud.result"

            ws.send_json(crud("r2", "Category", "read", id=new_id))
            assert ws.receive_json()["error"]["kind"] == "NotFoundError"

    def test_view_read_with_count(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            smartphones = category_id(ws, "Smartphones")

            ws.send_json(
                crud(
                    "v",
                    "Product",
                    "read",
                    view="categoryView",
                    params={"category": smartphones},
                    pageSize=2,
                    getCount=True,
                )
            )
            page = ws.receive_json()["data"]

            assert [p["name"] for p in page["data"]] == ["Galaxy", "Moto"]
            assert page["is_last_page"] is False
            assert page["count"] == 4

    def test_missing_view_param(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            ws.send_json(crud("v", "Product", "read", view="lowStockView", params={"category": "x"}))
            error = ws.receive_json()["error"]
            assert error["kind"] == "MissingParameterError"
            assert error["missing"] == ["qty"]

    def test_user_password_is_hashed_and_hidden(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            ws.send_json(crud("c", "User", "create", value={"username": "bob", "password": "pw"}))
            bob_id = ws.receive_json()["data"]["id"]

            ws.send_json(crud("r", "User", "read", id=bob_id))
            assert ws.receive_json()["data"] == {"id": bob_id, "username": "bob"}

        stored = client.app.state.store.tables["User"][bob_id]
        assert stored["password"].startswith("pbkdf2_sha256$")

        response = client.post("/auth/login", json={"username": "bob", "password": "pw"})
        assert response.status_code == 200

    def test_username_is_unique(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            ws.send_json(crud("c", "User", "create", value={"username": "alice", "password": "other"}))
            error = ws.receive_json()["error"]
            assert error["kind"] == "ValidationError"
            assert error["fields"] == {"username": "already exists"}

        assert len(client.app.state.store.tables["User"]) == 1


class TestSubscriptions:
    def test_publish_to_other_connection(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as watcher, client.websocket_connect(
            f"/ws/crud?token={token}"
        ) as writer:
            watcher.send_json(crud("s", "Category", "subscribe", view="alphabeticalView"))
            subscribed = watcher.receive_json()
            assert subscribed["data"]["channel"] == "crud>alphabeticalView({}):Category"
            assert [c["name"] for c in subscribed["data"]["data"]["data"]] == ["Laptops", "Smartphones", "Tablets"]

            writer.send_json(crud("c", "Category", "create", value={"name": "Cameras"}))
            assert writer.receive_json()["type"] == "crud.result"

            push = watcher.receive_json()
            assert push["type"] == "crud.publish"
            assert push["channel"] == "crud>alphabeticalView({}):Category"
            assert [c["name"] for c in push["data"]["data"]] == ["Cameras", "Laptops", "Smartphones", "Tablets"]

    def test_publish_arrives_before_result(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            ws.send_json(crud("s", "Category", "subscribe"))
            ws.receive_json()

            ws.send_json(crud("c", "Category", "create", value={"name": "Cameras"}))
            assert ws.receive_json()["type"] == "crud.publish"
            assert ws.receive_json()["type"] == "crud.result"

    def test_unsubscribe(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            ws.send_json(crud("s", "Category", "subscribe"))
            channel = ws.receive_json()["data"]["channel"]

            ws.send_json({"type": "unsubscribe", "channel": channel})
            assert ws.receive_json() == {"type": "unsubscribe.ok", "channel": channel, "removed": True}

            ws.send_json(crud("c", "Category", "create", value={"name": "Cameras"}))
            assert ws.receive_json()["type"] == "crud.result"

    def test_logged_out_subscriber_is_told_to_reauthenticate(self, client, token):
        with client.websocket_connect(f"/ws/crud?token={token}") as watcher, client.websocket_connect(
            f"/ws/crud?token={token}"
        ) as writer:
            watcher.send_json(crud("s", "Category", "subscribe"))
            watcher.receive_json()
            watcher.send_json({"type": "logout"})
            assert watcher.receive_json() == {"type": "logout"}

            writer.send_json(crud("c", "Category", "create", value={"name": "Cameras"}))
            writer.receive_json()

            error = watcher.receive_json()
            assert error["type"] == "crud.error"
            assert error["channel"] == "crud>Category"
            assert error["error"]["reason"] == "Unauthenticated"
            assert watcher.receive_json() == {"type": "logout"}

    def test_disconnect_drops_subscriptions(self, client, token):
        dispatcher = client.app.state.dispatcher
        with client.websocket_connect(f"/ws/crud?token={token}") as ws:
            ws.send_json(crud("s", "Category", "subscribe"))
            ws.receive_json()
            assert len(dispatcher.subscriptions) == 1

        assert len(dispatcher.subscriptions) == 0
