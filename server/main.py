"""
Catalog server FastAPI application.

Entry point for the API server: realtime CRUD over WebSocket, login routes,
and the static frontend from public/.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from crud.dispatcher import CrudDispatcher
from crud.postgres_store import PostgresStore
from crud.store import MemoryStore, Store
from server import db
from server.auth import hash_user_password
from server.catalog import build_catalog
from server.config import settings
from server.routes import auth_routes
from server.routes import ws as ws_routes
from server.seed import seed_dummy_data


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown logic:
    - Build the catalog registries (a SchemaError stops startup here)
    - Open the store (Postgres pool or in-memory)
    - Seed dummy data when asked to
    - Close the pool on shutdown
    """
    print(f"   >> Worker PID: {os.getpid()}")

    catalog = build_catalog(settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    print(f"Catalog loaded: {', '.join(catalog.schemas.collections)}")

    store: Store
    if settings.STORE_BACKEND == "postgres":
        pool = await db.init_pool()
        store = PostgresStore(pool, catalog.tables, catalog.schemas)
        print("Database pool initialized")
    else:
        store = MemoryStore(catalog.primary_keys, catalog.unique_fields)
        print("Using in-memory store")

    app.state.catalog = catalog
    app.state.store = store
    app.state.dispatcher = CrudDispatcher(catalog, store, write_hooks={"User": hash_user_password})

    if settings.SEED_DUMMY_DATA:
        inserted = await seed_dummy_data(store)
        print(f"Dummy data seeded: {inserted}")

    yield

    if settings.STORE_BACKEND == "postgres":
        await db.close_pool()
        print("Database pool closed")


app = FastAPI(
    title="Catalog",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
)

# Register routes
app.include_router(auth_routes.router)
app.include_router(ws_routes.router)


@app.get("/health")
async def health():
    """Health check endpoint for uptime monitoring."""
    return {"status": "ok"}


# Serve frontend. Mounted after the API routes so they win.
_PUBLIC = Path(settings.PUBLIC_DIR)

if _PUBLIC.is_dir():
    app.mount("/", StaticFiles(directory=str(_PUBLIC), html=True), name="public")
