"""WebSocket message models for the CRUD protocol."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from crud.types import Identity, RequestContext


class CrudMessage(BaseModel):
    """
    What the client sends for a CRUD operation.

    Accepts both snake_case and the camelCase keys used by browser clients
    (pageSize, getCount).
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: Literal["crud"] = "crud"
    rid: str | int | None = None
    collection: str = Field(min_length=1, max_length=100)
    action: Literal["create", "read", "update", "delete", "subscribe"]
    id: str | None = Field(default=None, min_length=1, max_length=200)
    field: str | None = Field(default=None, min_length=1, max_length=100)
    value: Any = None
    view: str | None = Field(default=None, min_length=1, max_length=100)
    params: dict[str, Any] = Field(default_factory=dict)
    page_size: int | None = Field(default=None, alias="pageSize")
    offset: int = Field(default=0, ge=0)
    get_count: bool = Field(default=False, alias="getCount")

    def to_context(self, identity: Identity | None) -> RequestContext:
        return RequestContext(
            collection=self.collection,
            action=self.action,
            identity=identity,
            view=self.view,
            params=dict(self.params),
            resource_id=self.id,
            field_name=self.field,
            value=self.value,
            page_size=self.page_size,
            offset=self.offset,
            get_count=self.get_count,
        )


class LoginMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["login"] = "login"
    username: str = Field(min_length=1, max_length=200)
    password: str = Field(min_length=1, max_length=1000)


class AuthenticateMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["authenticate"] = "authenticate"
    token: str = Field(min_length=1)


class UnsubscribeMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["unsubscribe"] = "unsubscribe"
    channel: str = Field(min_length=1)
