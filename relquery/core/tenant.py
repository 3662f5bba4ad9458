"""Tenant scoping: current tenant context and the injected query predicate."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlglot import exp

from relquery.core.entity_type import EntityType
from relquery.validation import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TENANT_COLUMN = "tenant_id"


class TenantContext:
    """Current tenant identifier for one request or unit of work.

    A context is owned by a Session and handed explicitly to every query it
    builds. Worker loops processing several tenants must ``set`` (or use
    ``using``) before each unit of work.
    """

    def __init__(self, tenant_id: Any = None):
        self._tenant_id = tenant_id

    def set(self, tenant_id: Any) -> None:
        self._tenant_id = tenant_id

    def get(self) -> Any:
        return self._tenant_id

    def clear(self) -> None:
        self._tenant_id = None

    @property
    def is_set(self) -> bool:
        return self._tenant_id is not None

    @contextmanager
    def using(self, tenant_id: Any) -> Iterator["TenantContext"]:
        """Temporarily switch tenant, restoring the previous one on exit."""
        previous = self._tenant_id
        self._tenant_id = tenant_id
        try:
            yield self
        finally:
            self._tenant_id = previous

    def __repr__(self) -> str:
        return f"TenantContext(tenant_id={self._tenant_id!r})"


class TenantScope:
    """Builds the tenant predicate and stamps tenant ids on insert."""

    @staticmethod
    def predicate(entity_type: EntityType, context: TenantContext, alias: str | None = None) -> exp.Expression | None:
        """Predicate restricting ``entity_type`` rows to the current tenant.

        Args:
            entity_type: Entity type being queried
            context: Tenant context to read
            alias: Table alias the column is qualified with (defaults to the table name)

        Returns:
            None for types that are not tenant-scoped, ``FALSE`` when no tenant is
            set, otherwise ``<alias>.<tenant_column> = <tenant>``
        """
        if not entity_type.is_tenant_scoped:
            return None

        tenant_id = context.get()
        if tenant_id is None:
            logger.debug("No tenant context set; query against '%s' matches no rows", entity_type.name)
            return exp.false()

        column = exp.column(entity_type.tenant_column, table=alias or entity_type.table)
        return exp.EQ(this=column, expression=exp.convert(tenant_id))

    @staticmethod
    def stamp(entity_type: EntityType, attributes: dict[str, Any], context: TenantContext) -> dict[str, Any]:
        """Fill the tenant column from the context when the attributes leave it unset.

        Raises:
            ConfigurationError: If the column is unset and no tenant context exists
        """
        if not entity_type.is_tenant_scoped:
            return attributes

        if attributes.get(entity_type.tenant_column) is not None:
            return attributes

        tenant_id = context.get()
        if tenant_id is None:
            raise ConfigurationError(
                f"Cannot insert tenant-scoped entity '{entity_type.name}' without a tenant context "
                f"or an explicit '{entity_type.tenant_column}' value"
            )

        stamped = dict(attributes)
        stamped[entity_type.tenant_column] = tenant_id
        return stamped
