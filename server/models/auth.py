"""Authentication models for login and session management."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Username/password login."""

    model_config = ConfigDict(extra="forbid")

    username: str = Field(min_length=1, max_length=200)
    password: str = Field(min_length=1, max_length=1000)


class LoginResponse(BaseModel):
    """Token for clients that cannot use the session cookie (WebSocket authenticate)."""

    token: str
    username: str


class IdentityResponse(BaseModel):
    """What /auth/me returns."""

    subject: str
    username: str | None


class LogoutResponse(BaseModel):
    """Response after logout."""

    message: str = "Logged out successfully"
