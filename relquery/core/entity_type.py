"""Entity type declarations."""

from pydantic import BaseModel, Field

from relquery.core.relation import Relation


class EntityType(BaseModel):
    """Entity type definition.

    Maps a record kind to its physical table and declares its relations.
    Setting ``tenant_column`` makes every query against the type tenant-scoped.
    """

    name: str = Field(..., description="Unique entity type name")
    table: str = Field(..., description="Physical table name (schema.table)")
    description: str | None = Field(None, description="Human-readable description")

    primary_key: str = Field(default="id", description="Primary key column")
    incrementing: bool = Field(default=True, description="Primary key is assigned by the backend on insert")
    columns: list[str] | None = Field(
        default=None, description="Known columns; when set, column references are validated eagerly"
    )

    tenant_column: str | None = Field(
        default=None, description="Tenant discriminator column; None means the type is not tenant-scoped"
    )

    strict_mode: bool = Field(default=False, description="Reject lazy loads of relations not in allowed_lazy")
    allowed_lazy: list[str] = Field(default_factory=list, description="Relations allowed to lazy-load in strict mode")

    morph_alias: str | None = Field(
        default=None, description="Value stored in morph_type columns for this type (defaults to name)"
    )

    relations: list[Relation] = Field(default_factory=list, description="Relations to other entity types")

    def __hash__(self) -> int:
        return hash(self.name)

    @property
    def is_tenant_scoped(self) -> bool:
        return self.tenant_column is not None

    @property
    def morph_name(self) -> str:
        return self.morph_alias or self.name

    def get_relation(self, name: str) -> Relation | None:
        """Get relation by name."""
        for relation in self.relations:
            if relation.name == name:
                return relation
        return None

    def has_column(self, column: str) -> bool:
        """True when the column is known, or when columns are not declared."""
        if self.columns is None:
            return True
        return column in self.columns
