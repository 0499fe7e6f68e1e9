"""Authentication routes: username/password login and session cookie."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from crud.errors import StorageError
from crud.types import Identity
from server.auth import authenticate, create_jwt, get_current_identity
from server.config import settings
from server.models.auth import IdentityResponse, LoginRequest, LoginResponse, LogoutResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", status_code=200)
async def login_endpoint(req: LoginRequest, request: Request, response: Response) -> LoginResponse:
    """
    Log in with a username and password.

    Sets an HTTP-only session cookie (picked up by the WebSocket handshake)
    and returns the token for clients that send it explicitly.
    """
    try:
        identity = await authenticate(request.app.state.store, req.username, req.password)
    except StorageError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Login is temporarily unavailable. Please try again.",
        ) from e

    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password.",
        )

    token = create_jwt(identity.username or identity.subject, subject=identity.subject)
    response.set_cookie(
        key="session",
        value=token,
        httponly=True,
        secure=settings.ENVIRONMENT != "development",
        samesite="lax",
        max_age=settings.JWT_EXPIRY_HOURS * 3600,
        path="/",
    )
    return LoginResponse(token=token, username=req.username)


@router.get("/me", status_code=200)
async def get_current_identity_endpoint(
    identity: Identity = Depends(get_current_identity),
) -> IdentityResponse:
    """Get the current authenticated caller."""
    return IdentityResponse(subject=identity.subject, username=identity.username)


@router.post("/logout", status_code=200)
async def logout_endpoint(response: Response) -> LogoutResponse:
    """
    Logout the current caller.

    Clears the session cookie.
    """
    response.set_cookie(
        key="session",
        value="",
        httponly=True,
        secure=settings.ENVIRONMENT != "development",
        samesite="lax",
        max_age=0,
        path="/",
    )
    return LogoutResponse()
