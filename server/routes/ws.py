"""
WebSocket endpoint for the realtime CRUD API.

Accepts connections at /ws/crud. Each connection is a session: it carries the
caller's identity (from the session cookie, a ?token= query parameter, or a
later login/authenticate message) and owns its subscriptions.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import pydantic
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from crud.dispatcher import CrudDispatcher
from crud.errors import CrudError
from crud.types import Session
from server.auth import authenticate, create_jwt, identity_from_token
from server.models.messages import AuthenticateMessage, CrudMessage, LoginMessage, UnsubscribeMessage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


class WebSocketSession(Session):
    """A CRUD session bound to one WebSocket connection."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.session_id = uuid.uuid4().hex
        self.identity = None

    async def send(self, message: dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(message, default=str))

    async def request_reauth(self) -> None:
        """Drop the identity and tell the client to log in again."""
        self.identity = None
        await self.send({"type": "logout"})


def _validation_payload(e: pydantic.ValidationError) -> dict[str, Any]:
    fields = {".".join(str(p) for p in err["loc"]) or "*": err["msg"] for err in e.errors()}
    return {"kind": "ValidationError", "message": "Malformed message", "fields": fields}


async def _handle_crud(dispatcher: CrudDispatcher, session: WebSocketSession, msg: dict[str, Any]) -> None:
    rid = msg.get("rid")
    try:
        request = CrudMessage.model_validate(msg)
    except pydantic.ValidationError as e:
        logger.warning("ws: malformed crud message: %s", e.error_count())
        await session.send({"type": "crud.error", "rid": rid, "error": _validation_payload(e)})
        return

    ctx = request.to_context(session.identity)
    try:
        data = await dispatcher.dispatch(session, ctx)
    except CrudError as e:
        logger.info("ws: %s %s failed: %s", ctx.action, ctx.collection, e.kind)
        await session.send({"type": "crud.error", "rid": rid, "error": e.to_payload()})
        return

    await session.send({"type": "crud.result", "rid": rid, "data": data})


async def _handle_login(dispatcher: CrudDispatcher, session: WebSocketSession, msg: dict[str, Any]) -> None:
    try:
        login = LoginMessage.model_validate(msg)
    except pydantic.ValidationError as e:
        await session.send({"type": "login.error", "error": _validation_payload(e)})
        return

    try:
        identity = await authenticate(dispatcher.store, login.username, login.password)
    except CrudError as e:
        await session.send({"type": "login.error", "error": e.to_payload()})
        return

    if identity is None:
        logger.info("ws: failed login for %s", login.username)
        await session.send(
            {"type": "login.error", "error": {"kind": "AccessDenied", "message": "Invalid username or password"}}
        )
        return

    token = create_jwt(identity.username or identity.subject, subject=identity.subject)
    session.identity = identity_from_token(token)
    logger.info("ws: session %s logged in as %s", session.session_id, login.username)
    await session.send({"type": "login.ok", "token": token, "username": identity.username})


async def _handle_authenticate(session: WebSocketSession, msg: dict[str, Any]) -> None:
    try:
        auth = AuthenticateMessage.model_validate(msg)
    except pydantic.ValidationError as e:
        await session.send({"type": "login.error", "error": _validation_payload(e)})
        return

    identity = identity_from_token(auth.token)
    if identity is None:
        await session.send({"type": "login.error", "error": {"kind": "AccessDenied", "message": "Invalid token"}})
        return
    session.identity = identity
    await session.send({"type": "login.ok", "token": auth.token, "username": identity.username})


async def _handle_unsubscribe(dispatcher: CrudDispatcher, session: WebSocketSession, msg: dict[str, Any]) -> None:
    try:
        unsub = UnsubscribeMessage.model_validate(msg)
    except pydantic.ValidationError as e:
        await session.send({"type": "crud.error", "error": _validation_payload(e)})
        return
    removed = await dispatcher.unsubscribe(session, unsub.channel)
    await session.send({"type": "unsubscribe.ok", "channel": unsub.channel, "removed": removed})


@router.websocket("/ws/crud")
async def crud_websocket(websocket: WebSocket) -> None:
    """
    Realtime CRUD over WebSocket.

    Protocol:
      Client → Server:  {"type": "crud", "rid": ..., "collection": ..., "action": ..., ...}
                        {"type": "login", "username": ..., "password": ...}
                        {"type": "authenticate", "token": ...}
                        {"type": "logout"}
                        {"type": "unsubscribe", "channel": ...}
      Server → Client:  crud.result | crud.error | crud.publish | login.ok | login.error | logout
    """
    await websocket.accept()
    dispatcher: CrudDispatcher = websocket.app.state.dispatcher

    session = WebSocketSession(websocket)
    session.identity = identity_from_token(websocket.query_params.get("token") or websocket.cookies.get("session"))
    logger.info(
        "WebSocket accepted: session=%s authenticated=%s", session.session_id, session.identity is not None
    )

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("ws: malformed message from client: %r", raw[:200])
                await session.send(
                    {"type": "crud.error", "error": {"kind": "ValidationError", "message": "Malformed JSON"}}
                )
                continue
            if not isinstance(msg, dict):
                await session.send(
                    {"type": "crud.error", "error": {"kind": "ValidationError", "message": "Expected an object"}}
                )
                continue

            msg_type = msg.get("type")

            if msg_type == "crud":
                await _handle_crud(dispatcher, session, msg)
            elif msg_type == "login":
                await _handle_login(dispatcher, session, msg)
            elif msg_type == "authenticate":
                await _handle_authenticate(session, msg)
            elif msg_type == "logout":
                session.identity = None
                await session.send({"type": "logout"})
            elif msg_type == "unsubscribe":
                await _handle_unsubscribe(dispatcher, session, msg)
            else:
                logger.debug("ws: ignoring message type %r", msg_type)

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected: session=%s", session.session_id)
    finally:
        dispatcher.drop_session(session)
