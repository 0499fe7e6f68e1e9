"""
CRUD Kernel — Shared Types

Data classes passed between the registries, the dispatcher and the transport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

ACTIONS: set[str] = {"create", "read", "update", "delete", "subscribe"}


def now_utc() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """An authenticated caller, as established by the auth hook."""

    subject: str
    username: str | None = None
    expires_at: datetime | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    def is_valid_at(self, moment: datetime) -> bool:
        return self.expires_at is None or self.expires_at > moment


@dataclass
class RequestContext:
    """
    One inbound operation.

    Created by the transport when a request arrives and dropped once the
    response (or subscription push) is sent. Never shared between requests.
    """

    collection: str
    action: str
    identity: Identity | None = None
    view: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    resource_id: str | None = None
    field_name: str | None = None
    value: Any = None
    page_size: int | None = None
    offset: int = 0
    get_count: bool = False
    received_at: datetime = field(default_factory=now_utc)

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None and self.identity.is_valid_at(self.received_at)


# ---------------------------------------------------------------------------
# Session protocol
# ---------------------------------------------------------------------------


class Session:
    """
    Abstract transport session.
    Implemented by the WebSocket layer in production, and by recorders in tests.
    """

    session_id: str
    identity: Identity | None = None

    async def send(self, message: dict[str, Any]) -> None:
        """Push a message to the caller."""
        raise NotImplementedError

    async def request_reauth(self) -> None:
        """Tell the caller its credentials are no longer accepted."""
        raise NotImplementedError
