"""
Pydantic models for the catalog server.

Wire shapes only. No imports from db or routes.
"""

from server.models.auth import IdentityResponse, LoginRequest, LoginResponse, LogoutResponse
from server.models.messages import AuthenticateMessage, CrudMessage, LoginMessage, UnsubscribeMessage

__all__ = [
    # Auth models
    "LoginRequest",
    "LoginResponse",
    "IdentityResponse",
    "LogoutResponse",
    # WebSocket messages
    "CrudMessage",
    "LoginMessage",
    "AuthenticateMessage",
    "UnsubscribeMessage",
]
