"""
CRUD Kernel — Collection Configuration

The declarative surface: one CollectionConfig per collection (fields, views,
filters, backing table). Catalog.from_configs() builds the three registries
once at startup; any SchemaError aborts startup.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from crud.filters import AccessFilterChain, FilterPair
from crud.schema import DEFAULT_PRIMARY_KEY, FieldDef, SchemaRegistry
from crud.views import ViewDefinition, ViewResolver


@dataclass(frozen=True)
class CollectionConfig:
    name: str
    fields: tuple[FieldDef, ...]
    views: tuple[ViewDefinition, ...] = ()
    filters: FilterPair | None = None
    table: str | None = None
    primary_key: str = DEFAULT_PRIMARY_KEY
    unique: tuple[str, ...] = ()


@dataclass
class Catalog:
    """The registries for every configured collection, built together."""

    schemas: SchemaRegistry
    views: ViewResolver
    filters: AccessFilterChain
    tables: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_configs(
        cls,
        configs: Iterable[CollectionConfig],
        default_page_size: int = 5,
        max_page_size: int = 100,
    ) -> Catalog:
        configs = list(configs)
        schemas = SchemaRegistry()
        for config in configs:
            schemas.register(config.name, config.fields, primary_key=config.primary_key, unique=config.unique)

        views = ViewResolver(schemas, default_page_size=default_page_size, max_page_size=max_page_size)
        filters = AccessFilterChain()
        tables: dict[str, str] = {}
        for config in configs:
            for definition in config.views:
                views.register(config.name, definition)
            if config.filters is not None:
                filters.register(config.name, config.filters, primary_key=config.primary_key)
            tables[config.name] = config.table or config.name.lower()

        return cls(schemas=schemas, views=views, filters=filters, tables=tables)

    @property
    def primary_keys(self) -> dict[str, str]:
        return {name: self.schemas.get(name).primary_key for name in self.schemas.collections}

    @property
    def unique_fields(self) -> dict[str, tuple[str, ...]]:
        return {name: self.schemas.get(name).unique for name in self.schemas.collections}
