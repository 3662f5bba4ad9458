"""Relation descriptors between entity types."""

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from relquery.core.entity_type import EntityType

RelationKind = Literal[
    "one_to_one",
    "one_to_many",
    "many_to_one",
    "many_to_many",
    "has_many_through",
    "polymorphic_one",
    "polymorphic_many",
    "polymorphic_to",
]

TO_MANY_KINDS = frozenset({"one_to_many", "many_to_many", "has_many_through", "polymorphic_many"})

# Polymorphic association columns are a fixed naming convention.
MORPH_ID_COLUMN = "morph_id"
MORPH_TYPE_COLUMN = "morph_type"


class Relation(BaseModel):
    """Describes one relation from a source entity type to a target entity type.

    Relation kinds:
    - one_to_one: target holds foreign_key pointing at source.source_key
    - one_to_many: same as one_to_one, resolving to a list
    - many_to_one: source holds foreign_key pointing at target.owner_key
    - many_to_many: pivot_table rows join source (pivot_source_key) to target (pivot_target_key)
    - has_many_through: source -> through (through_foreign_key) -> target (foreign_key)
    - polymorphic_one / polymorphic_many: target holds morph_id/morph_type pointing at source
    - polymorphic_to: source holds morph_id/morph_type pointing at one of allowed_types
    """

    name: str = Field(..., description="Relation name, unique per source entity type")
    kind: RelationKind = Field(..., description="Relation kind")
    target: str | None = Field(default=None, description="Target entity type name (all kinds but polymorphic_to)")

    source_key: str | None = Field(
        default=None, description="Key column on the source side (defaults to the source primary key)"
    )
    foreign_key: str | None = Field(
        default=None,
        description="Foreign key column (on target for has-* kinds, on source for many_to_one)",
    )
    owner_key: str | None = Field(
        default=None, description="Key column on the target referenced by the source (defaults to target primary key)"
    )

    pivot_table: str | None = Field(default=None, description="Pivot table for many_to_many")
    pivot_source_key: str | None = Field(default=None, description="Pivot column referencing the source")
    pivot_target_key: str | None = Field(default=None, description="Pivot column referencing the target")
    pivot_columns: list[str] = Field(default_factory=list, description="Extra pivot columns exposed on entity.pivot")

    through: str | None = Field(default=None, description="Bridging entity type for has_many_through")
    through_foreign_key: str | None = Field(
        default=None, description="Column on the bridging entity referencing the source"
    )
    through_key: str | None = Field(
        default=None, description="Key on the bridging entity referenced by the target (defaults to its primary key)"
    )

    morph_type_column: Literal["morph_type"] = Field(
        default=MORPH_TYPE_COLUMN, description="Polymorphic type discriminator column (fixed)"
    )
    morph_id_column: Literal["morph_id"] = Field(
        default=MORPH_ID_COLUMN, description="Polymorphic id column (fixed)"
    )
    allowed_types: list[str] = Field(
        default_factory=list, description="Entity types a polymorphic_to relation may resolve to"
    )

    @property
    def is_to_many(self) -> bool:
        """True when the relation resolves to a list."""
        return self.kind in TO_MANY_KINDS

    def local_key(self, source: "EntityType") -> str:
        """Column on the source whose value identifies related rows."""
        if self.kind == "many_to_one":
            return self.many_to_one_foreign_key()
        if self.kind == "polymorphic_to":
            return self.morph_id_column
        return self.source_key or source.primary_key

    def target_foreign_key(self, source: "EntityType") -> str:
        """Foreign key on the target pointing at the source (one_to_one / one_to_many)."""
        return self.foreign_key or f"{source.name}_id"

    def many_to_one_foreign_key(self) -> str:
        """Foreign key on the source pointing at the target (many_to_one)."""
        return self.foreign_key or f"{self.name}_id"

    def target_key(self, target: "EntityType") -> str:
        """Key column on the target referenced by the source or pivot."""
        return self.owner_key or target.primary_key

    def bridge_key(self, through: "EntityType") -> str:
        """Key column on the bridging entity referenced by the final target."""
        return self.through_key or through.primary_key
