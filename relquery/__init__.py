"""relquery: relationship-aware query engine with batched eager loading and tenant scoping."""

__version__ = "0.1.0"

from relquery.core.entity import Entity
from relquery.core.entity_type import EntityType
from relquery.core.relation import Relation
from relquery.core.tenant import TenantContext
from relquery.core.transformer import Transformer
from relquery.validation import (
    ConfigurationError,
    RecordNotFoundError,
    RelqueryError,
    StrictModeViolation,
    TransportError,
)

__all__ = [
    "ConfigurationError",
    "Entity",
    "EntityType",
    "RecordNotFoundError",
    "Relation",
    "RelqueryError",
    "Session",
    "StrictModeViolation",
    "TenantContext",
    "Transformer",
    "TransportError",
]


def __getattr__(name):  # Lazy import to avoid importing duckdb on package import
    if name == "Session":
        from relquery.core.session import Session  # type: ignore

        return Session
    raise AttributeError(name)
