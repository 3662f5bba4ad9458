"""Error taxonomy and declaration validation for relquery."""

from typing import TYPE_CHECKING

from relquery.db.base import validate_identifier

if TYPE_CHECKING:
    from relquery.core.entity_type import EntityType
    from relquery.core.relation import Relation


class RelqueryError(Exception):
    """Base class for all relquery errors."""

    pass


class ConfigurationError(RelqueryError):
    """Raised for programmer mistakes: unknown relations, contexts, fields, columns."""

    pass


class EntityValidationError(ConfigurationError):
    """Raised when an entity type declaration is invalid."""

    pass


class RelationValidationError(ConfigurationError):
    """Raised when a relation declaration is invalid."""

    pass


class StrictModeViolation(RelqueryError):
    """Raised when a strict entity type lazily loads a relation it did not allow."""

    def __init__(self, entity_type: str, relation: str):
        self.entity_type = entity_type
        self.relation = relation
        super().__init__(
            f"Lazy loading of relation '{relation}' on entity type '{entity_type}' is disabled "
            f"by strict mode. Eager load it with .with_('{relation}') or add it to allowed_lazy."
        )


class TransportError(RelqueryError):
    """Raised when the database backend fails to execute a statement."""

    pass


class RecordNotFoundError(RelqueryError):
    """Raised when a row backing an existing entity instance no longer exists."""

    pass


OPERATORS = ("=", "!=", "<>", "<", "<=", ">", ">=", "like", "not like", "in", "not in", "is", "is not")


def validate_entity_type(entity_type: "EntityType") -> list[str]:
    """Validate an entity type declaration.

    Args:
        entity_type: Entity type to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    for value, label in (
        (entity_type.name, "entity name"),
        (entity_type.table, "table name"),
        (entity_type.primary_key, "primary key"),
    ):
        try:
            validate_identifier(value, label)
        except ValueError as e:
            errors.append(f"Entity '{entity_type.name}': {e}")

    if entity_type.tenant_column:
        try:
            validate_identifier(entity_type.tenant_column, "tenant column")
        except ValueError as e:
            errors.append(f"Entity '{entity_type.name}': {e}")

    if entity_type.columns is not None:
        if entity_type.primary_key not in entity_type.columns:
            errors.append(
                f"Entity '{entity_type.name}': primary key '{entity_type.primary_key}' missing from columns"
            )
        if entity_type.tenant_column and entity_type.tenant_column not in entity_type.columns:
            errors.append(
                f"Entity '{entity_type.name}': tenant column '{entity_type.tenant_column}' missing from columns"
            )

    relation_names = [r.name for r in entity_type.relations]
    for name in set(relation_names):
        if relation_names.count(name) > 1:
            errors.append(f"Entity '{entity_type.name}': relation '{name}' declared more than once")

    return errors


def validate_relation(entity_type: "EntityType", relation: "Relation") -> list[str]:
    """Validate a relation declaration against its source entity type.

    Args:
        entity_type: Source entity type
        relation: Relation to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []
    prefix = f"Relation '{entity_type.name}.{relation.name}'"

    try:
        validate_identifier(relation.name, "relation name")
    except ValueError as e:
        errors.append(f"{prefix}: {e}")

    if relation.kind == "polymorphic_to":
        if not relation.allowed_types:
            errors.append(f"{prefix}: polymorphic_to requires allowed_types")
        if relation.target:
            errors.append(f"{prefix}: polymorphic_to takes allowed_types, not target")
    elif not relation.target:
        errors.append(f"{prefix}: target entity type is required for {relation.kind}")

    if relation.kind == "many_to_many":
        for field in ("pivot_table", "pivot_source_key", "pivot_target_key"):
            if not getattr(relation, field):
                errors.append(f"{prefix}: many_to_many requires {field}")

    if relation.kind == "has_many_through":
        if not relation.through:
            errors.append(f"{prefix}: has_many_through requires through")
        if not relation.through_foreign_key:
            errors.append(f"{prefix}: has_many_through requires through_foreign_key")
        if not relation.foreign_key:
            errors.append(f"{prefix}: has_many_through requires foreign_key")

    for field in (
        "source_key",
        "foreign_key",
        "owner_key",
        "pivot_table",
        "pivot_source_key",
        "pivot_target_key",
        "through_foreign_key",
        "through_key",
    ):
        value = getattr(relation, field)
        if value:
            try:
                validate_identifier(value, field.replace("_", " "))
            except ValueError as e:
                errors.append(f"{prefix}: {e}")

    for column in relation.pivot_columns:
        try:
            validate_identifier(column, "pivot column")
        except ValueError as e:
            errors.append(f"{prefix}: {e}")

    return errors


def validate_operator(operator: str) -> str:
    """Normalize and validate a comparison operator.

    Raises:
        ConfigurationError: If the operator is not supported
    """
    normalized = operator.strip().lower()
    if normalized not in OPERATORS:
        raise ConfigurationError(
            f"Invalid operator '{operator}'. Must be one of: {', '.join(OPERATORS)}"
        )
    return normalized
