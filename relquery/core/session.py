"""Session: the main relquery API."""

import hashlib
import logging
from pathlib import Path
from typing import Any, Protocol

from sqlglot import exp

from relquery.config import CacheSettings
from relquery.core.eager import EagerLoadPlanner, EagerLoadSpec, parse_count_spec
from relquery.core.entity import Entity, RelationCache
from relquery.core.entity_type import EntityType
from relquery.core.lazy import LazyLoader
from relquery.core.query import QueryBuilder, sql_value
from relquery.core.registry import Registry
from relquery.core.relation import Relation
from relquery.core.tenant import TenantContext, TenantScope
from relquery.core.transformer import Transformer, TransformerEngine
from relquery.db import adapter_from_url
from relquery.db.base import BaseDatabaseAdapter, validate_identifier
from relquery.validation import ConfigurationError, RecordNotFoundError

logger = logging.getLogger(__name__)


class CountCache(Protocol):
    """External cache collaborator for derived data such as relation counts."""

    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...


class Session:
    """Main relquery interface.

    Owns the backend adapter, the relationship registry, the tenant context
    and the transformer registry, and records every executed statement in
    ``queries``.
    """

    def __init__(
        self,
        connection: str = "duckdb:///:memory:",
        tenant: TenantContext | Any = None,
        cache: CountCache | None = None,
        cache_settings: CacheSettings | None = None,
        adapter: BaseDatabaseAdapter | None = None,
    ):
        """Initialize session.

        Args:
            connection: Database connection string (default: in-memory DuckDB)
            tenant: TenantContext to use, or an initial tenant id
            cache: Optional cache collaborator for count queries
            cache_settings: Whether and how long counts may be cached
            adapter: Prebuilt adapter (overrides ``connection``)
        """
        self.adapter = adapter or adapter_from_url(connection)
        self.dialect = self.adapter.dialect
        self.registry = Registry()
        self.tenant = tenant if isinstance(tenant, TenantContext) else TenantContext(tenant)
        self.cache = cache
        self.cache_settings = cache_settings or CacheSettings()
        self.eager = EagerLoadPlanner(self)
        self.lazy = LazyLoader(self)
        self.transformers = TransformerEngine(self.registry)
        self.queries: list[str] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @classmethod
    def from_config(cls, path: str | Path, cache: CountCache | None = None) -> "Session":
        """Build a session from a relquery.yaml / relquery.json file.

        Args:
            path: Config file path
            cache: Optional cache collaborator

        Returns:
            Session with the configured connection and entity types registered
        """
        from relquery.config import build_connection_string, load_config
        from relquery.loaders import load_entities

        config = load_config(Path(path))
        session = cls(connection=build_connection_string(config), cache=cache, cache_settings=config.cache)
        if config.entities_path:
            for entity_type in load_entities(config.entities_path, config.tenant_column):
                session.add_entity(entity_type)
        return session

    # Declarations

    def add_entity(self, entity_type: EntityType) -> None:
        """Register an entity type and its relations.

        Raises:
            EntityValidationError: If the declaration is invalid
        """
        self.registry.add_entity(entity_type)

    def register(self, entity_type: str, relation_name: str, descriptor: Relation) -> None:
        """Register an extra relation on an already added entity type."""
        self.registry.register(entity_type, relation_name, descriptor)

    def register_transformer(self, transformer: type[Transformer]) -> type[Transformer]:
        return self.transformers.register(transformer)

    # Statements

    def execute(self, sql: str) -> list[dict[str, Any]]:
        """Execute raw SQL and return its rows (empty for statements without results)."""
        self.queries.append(sql)
        logger.debug("Executing SQL: %s", sql)
        result = self.adapter.execute(sql)
        return self.adapter.fetchall(result)

    def fetch(self, sql: str, cacheable: bool = False) -> list[dict[str, Any]]:
        """Execute a generated statement, consulting the count cache when allowed."""
        if not (cacheable and self.cache is not None and self.cache_settings.enabled):
            return self.execute(sql)

        key = "relquery:" + hashlib.sha256(f"{self.dialect}:{sql}".encode()).hexdigest()
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Count cache hit for %s", key)
            return cached
        rows = self.execute(sql)
        self.cache.set(key, rows, self.cache_settings.ttl)
        return rows

    def reset_query_log(self) -> None:
        self.queries.clear()

    @property
    def query_count(self) -> int:
        return len(self.queries)

    # Queries

    def query(self, entity_type: str) -> QueryBuilder:
        """Start a query against an entity type."""
        return QueryBuilder(self, self.registry.get_entity(entity_type))

    def find(self, entity_type: str, key: Any) -> Entity | None:
        """Entity by primary key, or None."""
        return self.query(entity_type).find(key)

    def load(self, entities: list[Entity], *relations: str | dict) -> list[Entity]:
        """Eager load relations onto already fetched entities."""
        if not entities:
            return entities
        return self.eager.load(entities, EagerLoadSpec.parse(relations))

    def load_count(self, entities: list[Entity], *relations: str | dict) -> list[Entity]:
        """Attach ``<relation>_count`` attributes to already fetched entities."""
        if not entities:
            return entities
        return self.eager.load_counts(entities, parse_count_spec(relations))

    def transform(self, obj: Any, **options: Any) -> Any:
        """Shortcut for ``session.transformers.transform``."""
        return self.transformers.transform(obj, **options)

    # Persistence

    def new(self, entity_type: str, attributes: dict[str, Any] | None = None) -> Entity:
        """Unsaved entity attached to this session."""
        entity = Entity(self.registry.get_entity(entity_type), session=self)
        for column, value in (attributes or {}).items():
            entity[column] = value
        return entity

    def insert(self, entity_type: str, attributes: dict[str, Any]) -> Entity:
        """Insert a row and return the persisted entity."""
        return self.save(self.new(entity_type, attributes))

    def save(self, entity: Entity) -> Entity:
        """Insert a new entity or update the dirty attributes of a persisted one.

        Raises:
            ConfigurationError: If a tenant-scoped insert has no tenant to stamp
            RecordNotFoundError: If a persisted entity's row is gone (or outside the current tenant)
        """
        entity.session = self
        if entity.exists:
            return self._update(entity)
        return self._insert(entity)

    def _insert(self, entity: Entity) -> Entity:
        entity_type = entity.entity_type
        attributes = TenantScope.stamp(entity_type, entity.attributes, self.tenant)
        if entity_type.incrementing and attributes.get(entity_type.primary_key) is None:
            attributes = {k: v for k, v in attributes.items() if k != entity_type.primary_key}
        if not attributes:
            raise ConfigurationError(f"Nothing to insert for entity '{entity_type.name}'")

        columns = list(attributes)
        for column in columns:
            try:
                validate_identifier(column, "column")
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
        statement = exp.insert(
            exp.values([tuple(sql_value(attributes[column]) for column in columns)]),
            entity_type.table,
            columns=columns,
        )
        statement.set("returning", exp.Returning(expressions=[exp.Star()]))
        rows = self.fetch(statement.sql(dialect=self.dialect))

        entity.attributes = {**attributes, **(rows[0] if rows else {})}
        entity.exists = True
        entity.sync_original()
        return entity

    def _update(self, entity: Entity) -> Entity:
        changes = entity.dirty
        if not changes:
            return entity
        entity_type = entity.entity_type
        updated = self.query(entity_type.name).where(entity_type.primary_key, "=", entity.key).update(changes)
        if not updated:
            raise RecordNotFoundError(f"{entity_type.name} with {entity_type.primary_key}={entity.key!r} no longer exists")
        entity.sync_original()
        return entity

    def delete(self, entity: Entity) -> None:
        """Delete a persisted entity.

        Raises:
            RecordNotFoundError: If its row is already gone (or outside the current tenant)
        """
        entity_type = entity.entity_type
        if not entity.exists:
            raise ConfigurationError(f"Cannot delete unsaved entity '{entity_type.name}'")
        deleted = self.query(entity_type.name).where(entity_type.primary_key, "=", entity.key).delete()
        if not deleted:
            raise RecordNotFoundError(f"{entity_type.name} with {entity_type.primary_key}={entity.key!r} no longer exists")
        entity.exists = False

    def refresh(self, entity: Entity) -> Entity:
        """Reload attributes from the backend and drop cached relations.

        Raises:
            RecordNotFoundError: If the row no longer exists
        """
        entity_type = entity.entity_type
        fresh = self.query(entity_type.name).find(entity.key)
        if fresh is None:
            raise RecordNotFoundError(f"{entity_type.name} with {entity_type.primary_key}={entity.key!r} no longer exists")
        entity.attributes = fresh.attributes
        entity.relations = RelationCache()
        entity.sync_original()
        return entity

    def close(self) -> None:
        self.adapter.close()
