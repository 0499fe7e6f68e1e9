"""
Authentication for the catalog server.

Password hashing, JWT issuance, and turning tokens into kernel identities.
The access filters only ever see the resulting Identity.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import secrets
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

import jwt
from fastapi import Cookie, Header, HTTPException, status

from crud.query import Query
from crud.store import Store
from crud.types import Identity
from server.config import settings

_HASH_SCHEME = "pbkdf2_sha256"


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(password: str, salt: str | None = None, iterations: int | None = None) -> str:
    """
    Hash a password with PBKDF2-SHA256.

    Returns "pbkdf2_sha256$<iterations>$<salt>$<hex digest>".
    """
    salt = salt or secrets.token_hex(16)
    iterations = iterations or settings.PASSWORD_HASH_ITERATIONS
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations).hex()
    return f"{_HASH_SCHEME}${iterations}${salt}${digest}"


def is_password_hash(value: str) -> bool:
    return value.startswith(_HASH_SCHEME + "$") and value.count("$") == 3


def verify_password(password: str, stored: str) -> bool:
    """
    Check a password against a stored hash.

    Malformed hashes, and hashes made with any iteration count other than
    the configured one, never match. CPU bound: call it off the event loop.
    """
    if not is_password_hash(stored):
        return False
    _, iterations, salt, _digest = stored.split("$")
    if iterations != str(settings.PASSWORD_HASH_ITERATIONS):
        return False
    candidate = hash_password(password, salt=salt, iterations=settings.PASSWORD_HASH_ITERATIONS)
    return hmac.compare_digest(candidate, stored)


async def hash_user_password(values: dict[str, Any]) -> dict[str, Any]:
    """
    Write hook for the User collection: never store a client's password as given.

    Every supplied value is hashed, including ones that already look like a
    hash, so callers cannot choose the stored hash or its cost.
    """
    password = values.get("password")
    if isinstance(password, str):
        values["password"] = await asyncio.to_thread(hash_password, password)
    return values


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------


def create_jwt(username: str, subject: str | None = None) -> str:
    """
    Create a JWT for a session.

    Args:
        username: Username to encode in the token
        subject: User id; defaults to the username

    Returns:
        Signed JWT string
    """
    expires_at = datetime.now(UTC) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": subject or username,
        "username": username,
        "exp": expires_at,
        "iat": datetime.now(UTC),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_jwt(token: str) -> dict:
    """
    Decode and verify a JWT.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please sign in again.",
        ) from e
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token. Please sign in again.",
        ) from e


def identity_from_payload(payload: dict) -> Identity:
    exp = payload.get("exp")
    return Identity(
        subject=str(payload["sub"]),
        username=payload.get("username"),
        expires_at=datetime.fromtimestamp(exp, UTC) if exp is not None else None,
        claims=payload,
    )


def identity_from_token(token: str | None) -> Identity | None:
    """
    Turn a token into an Identity.

    Returns None for a missing, invalid or expired token, so callers can
    treat the connection as unauthenticated.
    """
    if not token:
        return None
    try:
        payload = decode_jwt(token)
    except HTTPException:
        return None
    if not payload.get("sub"):
        return None
    return identity_from_payload(payload)


async def authenticate(store: Store, username: str, password: str) -> Identity | None:
    """
    Check a username/password pair against the User collection.

    Reads the store directly: the User access filters guard client requests,
    not the login itself.
    """
    rows = await store.fetch(Query.base("User", page_size=1).eq("username", username))
    if not rows:
        return None
    if not await asyncio.to_thread(verify_password, password, rows[0].get("password") or ""):
        return None
    user = rows[0]
    return Identity(subject=str(user["id"]), username=user["username"])


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------


async def get_current_identity(
    session: Annotated[str | None, Cookie()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> Identity:
    """
    FastAPI dependency to get the current authenticated caller.

    Tries a Bearer token first, then the session cookie.

    Raises:
        HTTPException: If authentication fails
    """
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.removeprefix("Bearer ")
    elif session:
        token = session

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated. Please sign in.",
        )

    payload = decode_jwt(token)
    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token. Please sign in again.",
        )
    return identity_from_payload(payload)
