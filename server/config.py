"""
Catalog server configuration — all environment variables in one place.

Read from environment at runtime. Never hardcode secrets.
"""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import quote


class Settings:
    """Application settings from environment variables."""

    # Application
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")

    # Store: "postgres" for production, "memory" for local development and tests
    STORE_BACKEND: str = os.environ.get("STORE_BACKEND", "postgres").lower()

    # Database (passed through to asyncpg untouched)
    DATABASE_HOST: str = os.environ.get("DATABASE_HOST", "127.0.0.1")
    DATABASE_PORT: int = int(os.environ.get("DATABASE_PORT", "5432"))
    DATABASE_NAME: str = os.environ.get("DATABASE_NAME", "catalog")
    DATABASE_USER: str = os.environ.get("DATABASE_USER", "postgres")
    DATABASE_PASSWORD: str = os.environ.get("DATABASE_PASSWORD", "")

    # Auth
    JWT_SECRET: str = os.environ.get("JWT_SECRET", "")
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = int(os.environ.get("JWT_EXPIRY_HOURS", "24"))
    PASSWORD_HASH_ITERATIONS: int = 200_000

    # Paging
    DEFAULT_PAGE_SIZE: int = int(os.environ.get("DEFAULT_PAGE_SIZE", "5"))
    MAX_PAGE_SIZE: int = int(os.environ.get("MAX_PAGE_SIZE", "100"))

    # Dummy data for empty stores
    SEED_DUMMY_DATA: bool = os.environ.get("SEED_DUMMY_DATA", "").lower() == "true"

    # Static files served at /
    PUBLIC_DIR: str = os.environ.get("PUBLIC_DIR", str(Path(__file__).parent.parent / "public"))

    @property
    def DATABASE_URL(self) -> str:
        url = os.environ.get("DATABASE_URL")
        if url:
            return url
        auth = quote(self.DATABASE_USER, safe="")
        if self.DATABASE_PASSWORD:
            auth += ":" + quote(self.DATABASE_PASSWORD, safe="")
        return f"postgresql://{auth}@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"


# Singleton instance
settings = Settings()

if not settings.JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is required")
if settings.STORE_BACKEND not in {"postgres", "memory"}:
    raise RuntimeError("STORE_BACKEND must be 'postgres' or 'memory'")
