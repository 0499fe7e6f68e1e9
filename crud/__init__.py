"""
CRUD Kernel — declarative collections over a pluggable store.

Four components:
  schema      — per-collection field definitions, input validation
  views       — named query refinements, resolved per request
  filters     — pre/post access control per collection
  dispatcher  — runs create/read/update/delete/subscribe against a Store

Stores:
  MemoryStore, PostgresStore (asyncpg)
"""

from crud.collections import Catalog, CollectionConfig
from crud.dispatcher import CrudDispatcher
from crud.filters import AccessFilterChain, Decision, FilterPair, MustBeLoggedIn, PassThrough, RedactFields
from crud.query import Query
from crud.schema import FieldDef, SchemaRegistry
from crud.store import MemoryStore, Store
from crud.types import Identity, RequestContext, Session
from crud.views import ResolvedQuery, Transform, ViewDefinition, ViewResolver, transform, view

__all__ = [
    "Catalog",
    "CollectionConfig",
    "CrudDispatcher",
    "AccessFilterChain",
    "Decision",
    "FilterPair",
    "MustBeLoggedIn",
    "PassThrough",
    "RedactFields",
    "Query",
    "FieldDef",
    "SchemaRegistry",
    "Store",
    "MemoryStore",
    "Identity",
    "RequestContext",
    "Session",
    "ResolvedQuery",
    "Transform",
    "ViewDefinition",
    "ViewResolver",
    "transform",
    "view",
]
