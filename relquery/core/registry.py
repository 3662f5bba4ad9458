"""Relationship registry: entity types and their relation descriptors."""

from relquery.core.entity_type import EntityType
from relquery.core.relation import Relation
from relquery.validation import (
    ConfigurationError,
    EntityValidationError,
    RelationValidationError,
    validate_entity_type,
    validate_relation,
)


class Registry:
    """Per-entity-type relation lookup.

    Populated once at startup and read-only afterwards, so concurrent
    readers need no locking. Both the eager load planner and the lazy
    loader resolve relations here.
    """

    def __init__(self):
        self.entities: dict[str, EntityType] = {}
        self._relations: dict[str, dict[str, Relation]] = {}
        self._morph_map: dict[str, str] = {}  # morph name -> entity type name

    def add_entity(self, entity_type: EntityType) -> None:
        """Add an entity type and register its declared relations.

        Args:
            entity_type: Entity type to add

        Raises:
            EntityValidationError: If the declaration is invalid or already registered
            RelationValidationError: If one of its relations is invalid
        """
        if entity_type.name in self.entities:
            raise EntityValidationError(f"Entity type {entity_type.name} already exists")

        errors = validate_entity_type(entity_type)
        for relation in entity_type.relations:
            errors.extend(validate_relation(entity_type, relation))
        if errors:
            raise EntityValidationError(
                f"Entity type '{entity_type.name}' validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

        morph_name = entity_type.morph_name
        if morph_name in self._morph_map:
            raise EntityValidationError(
                f"Morph name '{morph_name}' of '{entity_type.name}' is already used by '{self._morph_map[morph_name]}'"
            )

        self.entities[entity_type.name] = entity_type
        self._relations[entity_type.name] = {}
        self._morph_map[morph_name] = entity_type.name

        for relation in entity_type.relations:
            self.register(entity_type.name, relation.name, relation)

    def get_entity(self, name: str) -> EntityType:
        """Get entity type by name.

        Raises:
            ConfigurationError: If entity type not found
        """
        if name not in self.entities:
            raise ConfigurationError(f"Entity type '{name}' is not registered")
        return self.entities[name]

    def register(self, entity_type: str, relation_name: str, descriptor: Relation) -> None:
        """Register a relation on an entity type.

        Args:
            entity_type: Source entity type name
            relation_name: Name the relation is accessed by
            descriptor: Relation descriptor

        Raises:
            RelationValidationError: If the descriptor is invalid or the name is taken
        """
        source = self.get_entity(entity_type)
        if descriptor.name != relation_name:
            descriptor = descriptor.model_copy(update={"name": relation_name})

        errors = validate_relation(source, descriptor)
        if errors:
            raise RelationValidationError(
                f"Relation '{entity_type}.{relation_name}' validation failed:\n"
                + "\n".join(f"  - {e}" for e in errors)
            )

        relations = self._relations[entity_type]
        if relation_name in relations:
            raise RelationValidationError(f"Relation '{relation_name}' already registered on '{entity_type}'")
        relations[relation_name] = descriptor

    def resolve(self, entity_type: str, relation_name: str) -> Relation:
        """Resolve a relation descriptor.

        Args:
            entity_type: Source entity type name
            relation_name: Relation name

        Returns:
            The registered descriptor

        Raises:
            ConfigurationError: If no such relation is registered
        """
        relations = self._relations.get(entity_type)
        if relations is None:
            raise ConfigurationError(f"Entity type '{entity_type}' is not registered")
        if relation_name not in relations:
            known = ", ".join(sorted(relations)) or "none"
            raise ConfigurationError(
                f"Relation '{relation_name}' is not registered on entity type '{entity_type}' "
                f"(registered relations: {known})"
            )
        return relations[relation_name]

    def has_relation(self, entity_type: str, relation_name: str) -> bool:
        return relation_name in self._relations.get(entity_type, {})

    def relation_names(self, entity_type: str) -> list[str]:
        return list(self._relations.get(entity_type, {}))

    def entity_for_morph(self, morph_name: str) -> EntityType:
        """Get the entity type stored under a morph_type value.

        Raises:
            ConfigurationError: If no entity type uses that morph name
        """
        if morph_name not in self._morph_map:
            raise ConfigurationError(f"No entity type is registered for morph type '{morph_name}'")
        return self.entities[self._morph_map[morph_name]]

    def related_types(self, entity_type: str, relation: Relation) -> list[EntityType]:
        """Entity types a relation can resolve to, checked against the registry.

        Raises:
            ConfigurationError: If a referenced entity type is missing
        """
        if relation.kind == "polymorphic_to":
            return [self.get_entity(name) for name in relation.allowed_types]
        return [self.get_entity(relation.target)]

    def check(self) -> list[str]:
        """Report dangling relation targets and allowed_lazy names with no registered relation."""
        errors = []
        for entity_name, relations in self._relations.items():
            for name in self.entities[entity_name].allowed_lazy:
                if name not in relations:
                    errors.append(f"Entity '{entity_name}': allowed_lazy names unknown relation '{name}'")
            for relation in relations.values():
                referenced = list(relation.allowed_types)
                if relation.target:
                    referenced.append(relation.target)
                if relation.through:
                    referenced.append(relation.through)
                for name in referenced:
                    if name not in self.entities:
                        errors.append(f"Relation '{entity_name}.{relation.name}' references unknown entity type '{name}'")
        return errors
