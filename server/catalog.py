"""
Catalog collections: Category, Product, User.

The declarative part of the server. Each collection lists its fields, the
views clients may subscribe to, and who may touch it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from crud.collections import Catalog, CollectionConfig
from crud.filters import FilterPair, MustBeLoggedIn, PassThrough, RedactFields
from crud.query import Query
from crud.schema import integer, number, string
from crud.views import transform, view

must_be_logged_in = MustBeLoggedIn()


# ---------------------------------------------------------------------------
# View transforms
# ---------------------------------------------------------------------------


@transform
def alphabetical(query: Query, params: Mapping[str, Any]) -> Query:
    return query.order_by("name")


@transform
def by_category(query: Query, params: Mapping[str, Any]) -> Query:
    """Products of one category, by name."""
    return query.eq("category", params["category"]).order_by("name")


@transform
def low_stock(query: Query, params: Mapping[str, Any]) -> Query:
    """Products of one category with at most `qty` in stock, scarcest first."""
    return query.eq("category", params["category"]).where("qty", "le", params["qty"]).order_by("qty")


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

CATEGORY = CollectionConfig(
    name="Category",
    table="categories",
    fields=(
        string("id"),
        string("name"),
        string("desc", optional=True),
    ),
    views=(view("alphabeticalView", alphabetical, affecting_fields=["name"]),),
    filters=FilterPair(pre=must_be_logged_in),
)

PRODUCT = CollectionConfig(
    name="Product",
    table="products",
    fields=(
        string("id"),
        string("name"),
        integer("qty", optional=True),
        number("price", optional=True),
        string("desc", optional=True),
        string("category"),
    ),
    views=(
        view("categoryView", by_category, param_fields=["category"], affecting_fields=["name"]),
        view("lowStockView", low_stock, param_fields=["category", "qty"], primary_keys=["category"]),
    ),
    # Post filter is a pass-through for now; redaction rules for products go there.
    filters=FilterPair(pre=must_be_logged_in, post=PassThrough()),
)

USER = CollectionConfig(
    name="User",
    table="users",
    fields=(
        string("username"),
        string("password"),
    ),
    unique=("username",),
    filters=FilterPair(pre=must_be_logged_in, post=RedactFields(["password"])),
)

COLLECTIONS: tuple[CollectionConfig, ...] = (CATEGORY, PRODUCT, USER)


def build_catalog(default_page_size: int = 5, max_page_size: int = 100) -> Catalog:
    """Build the registries. Raises SchemaError on a bad configuration."""
    return Catalog.from_configs(COLLECTIONS, default_page_size=default_page_size, max_page_size=max_page_size)
