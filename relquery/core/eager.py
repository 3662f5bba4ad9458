"""Eager load planning: batched relation fetching for whole result sets."""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from relquery.core.entity import Entity
from relquery.core.entity_type import EntityType
from relquery.core.query import (
    AGGREGATE_ALIAS,
    KEY_ALIAS,
    QueryBuilder,
    RelationCallback,
    apply_callback,
    in_condition,
)
from relquery.core.relation import Relation
from relquery.db.base import validate_identifier
from relquery.validation import ConfigurationError

if TYPE_CHECKING:
    from relquery.core.session import Session

logger = logging.getLogger(__name__)


@dataclass
class EagerLoadNode:
    """One relation in an eager load tree."""

    name: str
    callback: RelationCallback | None = None
    children: dict[str, "EagerLoadNode"] = field(default_factory=dict)

    def copy(self) -> "EagerLoadNode":
        return EagerLoadNode(
            name=self.name,
            callback=self.callback,
            children={name: child.copy() for name, child in self.children.items()},
        )


class EagerLoadSpec:
    """Tree of relation paths to eager load, keyed by relation name.

    Built from dot-separated paths; a constraint callback attaches to the
    last segment of its path.
    """

    def __init__(self):
        self.children: dict[str, EagerLoadNode] = {}

    @classmethod
    def parse(cls, items: Iterable[str | dict[str, RelationCallback | None]]) -> "EagerLoadSpec":
        """Build a spec from paths and ``{path: callback}`` mappings.

        Example:
            >>> EagerLoadSpec.parse(["tasks.comments", {"owner": lambda q: q.where("active", True)}])
        """
        spec = cls()
        if isinstance(items, (str, dict)):
            items = [items]
        for item in items:
            if isinstance(item, dict):
                for path, callback in item.items():
                    spec.add(path, callback)
            elif isinstance(item, str):
                spec.add(item)
            else:
                raise ConfigurationError(f"Eager load entries must be paths or mappings, got {type(item).__name__}")
        return spec

    def add(self, path: str, callback: RelationCallback | None = None) -> None:
        segments = path.split(".")
        children = self.children
        node = None
        for segment in segments:
            try:
                validate_identifier(segment, "relation name")
            except ValueError as e:
                raise ConfigurationError(f"Invalid eager load path '{path}': {e}") from e
            node = children.setdefault(segment, EagerLoadNode(name=segment))
            children = node.children
        if callback is not None:
            node.callback = callback

    def merge(self, other: "EagerLoadSpec") -> None:
        def merge_into(target: dict[str, EagerLoadNode], source: dict[str, EagerLoadNode]) -> None:
            for name, node in source.items():
                if name not in target:
                    target[name] = node.copy()
                    continue
                if node.callback is not None:
                    target[name].callback = node.callback
                merge_into(target[name].children, node.children)

        merge_into(self.children, other.children)

    def copy(self) -> "EagerLoadSpec":
        spec = EagerLoadSpec()
        spec.children = {name: node.copy() for name, node in self.children.items()}
        return spec

    def paths(self) -> list[str]:
        """Leaf paths in dot notation."""

        def walk(prefix: str, nodes: dict[str, EagerLoadNode]) -> Iterator[str]:
            for name, node in nodes.items():
                path = f"{prefix}.{name}" if prefix else name
                if node.children:
                    yield from walk(path, node.children)
                else:
                    yield path

        return list(walk("", self.children))

    def __iter__(self) -> Iterator[EagerLoadNode]:
        return iter(self.children.values())

    def __bool__(self) -> bool:
        return bool(self.children)

    def __repr__(self) -> str:
        return f"EagerLoadSpec({self.paths()!r})"


def parse_count_spec(items: Iterable[str | dict[str, RelationCallback | None]]) -> dict[str, RelationCallback | None]:
    counts: dict[str, RelationCallback | None] = {}
    for item in items:
        mapping = item if isinstance(item, dict) else {item: None}
        counts.update(mapping)
    return counts


def _group_by_type(entities: list[Entity]) -> list[list[Entity]]:
    groups: dict[str, list[Entity]] = {}
    for entity in entities:
        groups.setdefault(entity.entity_type.name, []).append(entity)
    return list(groups.values())


def _unique(entities: Iterable[Entity]) -> list[Entity]:
    seen: set[int] = set()
    result = []
    for entity in entities:
        if id(entity) not in seen:
            seen.add(id(entity))
            result.append(entity)
    return result


class EagerLoadPlanner:
    """Fetches relations for a collection of parents in batched queries.

    Each relation level costs one ``WHERE key IN (...)`` query regardless
    of how many parents there are (two for has_many_through, one per
    concrete type for polymorphic_to). Batches are not wrapped in a
    transaction, so children may reflect writes made after the parents
    were read.
    """

    def __init__(self, session: "Session"):
        self.session = session

    @property
    def registry(self):
        return self.session.registry

    def validate(self, entity_type: EntityType, spec: EagerLoadSpec) -> None:
        """Resolve every relation in the tree without running queries.

        Raises:
            ConfigurationError: If any relation along any path is not registered
        """
        for node in spec:
            self._validate_node(entity_type, node)

    def _validate_node(self, entity_type: EntityType, node: EagerLoadNode) -> None:
        relation = self.registry.resolve(entity_type.name, node.name)
        for related in self.registry.related_types(entity_type.name, relation):
            for child in node.children.values():
                self._validate_node(related, child)

    def load(self, entities: list[Entity], spec: EagerLoadSpec) -> list[Entity]:
        """Eager load ``spec`` onto ``entities`` in place.

        Returns:
            The same entities, for chaining
        """
        for group in _group_by_type(entities):
            self.validate(group[0].entity_type, spec)
            for node in spec:
                self._load_node(group, node)
        return entities

    def _load_node(self, parents: list[Entity], node: EagerLoadNode) -> None:
        source = parents[0].entity_type
        relation = self.registry.resolve(source.name, node.name)

        if relation.kind == "has_many_through":
            related = self._load_through(parents, relation, node.callback)
        elif relation.kind == "polymorphic_to":
            related = self._load_polymorphic_to(parents, relation, node.callback)
        else:
            related = self._load_direct(parents, relation, node.callback)

        if node.children and related:
            for group in _group_by_type(related):
                for child in node.children.values():
                    self._load_node(group, child)

    def _attach(self, parents: list[Entity], relation: Relation, local_key: str, grouped: dict[Any, list[Entity]]) -> None:
        for parent in parents:
            matches = grouped.get(parent.get(local_key), [])
            if relation.is_to_many:
                parent.set_relation(relation.name, list(matches))
            else:
                parent.set_relation(relation.name, matches[0] if matches else None)

    def _load_direct(self, parents: list[Entity], relation: Relation, callback: RelationCallback | None) -> list[Entity]:
        source = parents[0].entity_type
        target = self.registry.get_entity(relation.target)
        local_key = relation.local_key(source)
        keys = [parent.get(local_key) for parent in parents]

        if all(key is None for key in keys):
            self._attach(parents, relation, local_key, {})
            return []

        query = apply_callback(QueryBuilder(self.session, target), callback)
        key_column = query.bind_to_parent(relation, source)
        query.where_expression(in_condition(key_column, keys))
        if not query.has_ordering:
            query.order_by(target.primary_key)

        logger.debug("Eager loading %s.%s for %d parents", source.name, relation.name, len(parents))
        children = query.all()

        grouped: dict[Any, list[Entity]] = {}
        for child in children:
            if relation.kind == "many_to_many":
                key = child.pivot[relation.pivot_source_key]
            else:
                key = child.get(key_column.name)
            grouped.setdefault(key, []).append(child)

        self._attach(parents, relation, local_key, grouped)
        return children

    def _load_through(self, parents: list[Entity], relation: Relation, callback: RelationCallback | None) -> list[Entity]:
        source = parents[0].entity_type
        through = self.registry.get_entity(relation.through)
        target = self.registry.get_entity(relation.target)
        local_key = relation.local_key(source)
        keys = [parent.get(local_key) for parent in parents]

        if all(key is None for key in keys):
            self._attach(parents, relation, local_key, {})
            return []

        logger.debug("Eager loading %s.%s through %s", source.name, relation.name, through.name)
        bridges = QueryBuilder(self.session, through).where_in(
            relation.through_foreign_key, [key for key in keys if key is not None]
        ).all()
        bridge_key = relation.bridge_key(through)
        bridge_parent = {
            bridge.get(bridge_key): bridge.get(relation.through_foreign_key)
            for bridge in bridges
            if bridge.get(bridge_key) is not None
        }

        if not bridge_parent:
            self._attach(parents, relation, local_key, {})
            return []

        query = apply_callback(QueryBuilder(self.session, target), callback)
        query.where_in(relation.foreign_key, list(bridge_parent))
        if not query.has_ordering:
            query.order_by(target.primary_key)
        children = query.all()

        grouped: dict[Any, list[Entity]] = {}
        for child in children:
            parent_key = bridge_parent.get(child.get(relation.foreign_key))
            grouped.setdefault(parent_key, []).append(child)

        self._attach(parents, relation, local_key, grouped)
        return children

    def _load_polymorphic_to(
        self, parents: list[Entity], relation: Relation, callback: RelationCallback | None
    ) -> list[Entity]:
        partitions: dict[str, list[Entity]] = {}
        for parent in parents:
            morph_type = parent.get(relation.morph_type_column)
            if morph_type is not None and parent.get(relation.morph_id_column) is not None:
                partitions.setdefault(morph_type, []).append(parent)

        resolved: dict[tuple[str, Any], Entity] = {}
        for morph_type, group in partitions.items():
            target = self.registry.entity_for_morph(morph_type)
            if target.name not in relation.allowed_types:
                raise ConfigurationError(
                    f"Relation '{parents[0].entity_type.name}.{relation.name}' found morph type '{morph_type}', "
                    f"which is not one of its allowed types: {', '.join(relation.allowed_types)}"
                )
            query = apply_callback(QueryBuilder(self.session, target), callback)
            query.where_in(target.primary_key, [parent.get(relation.morph_id_column) for parent in group])
            logger.debug("Eager loading %s for %d parents of morph type %s", relation.name, len(group), morph_type)
            for entity in query.all():
                resolved[(morph_type, entity.key)] = entity

        for parent in parents:
            lookup = (parent.get(relation.morph_type_column), parent.get(relation.morph_id_column))
            parent.set_relation(relation.name, resolved.get(lookup))

        return _unique(resolved.values())

    def load_counts(self, entities: list[Entity], relations: dict[str, RelationCallback | None]) -> list[Entity]:
        """Attach ``<relation>_count`` attributes using one GROUP BY query per relation."""
        for group in _group_by_type(entities):
            source = group[0].entity_type
            for name, callback in relations.items():
                relation = self.registry.resolve(source.name, name)
                if relation.kind == "polymorphic_to":
                    raise ConfigurationError(f"Relation '{name}' of kind polymorphic_to cannot be counted")

                target = self.registry.get_entity(relation.target)
                local_key = relation.local_key(source)
                keys = [entity.get(local_key) for entity in group]

                counts: dict[Any, int] = {}
                if any(key is not None for key in keys):
                    query = apply_callback(QueryBuilder(self.session, target), callback)
                    key_column = query.bind_to_parent(relation, source)
                    query.where_expression(in_condition(key_column, keys))
                    counts = {row[KEY_ALIAS]: int(row[AGGREGATE_ALIAS]) for row in query.aggregate_rows(key_column)}

                for entity in group:
                    entity.set_computed(f"{name}_count", counts.get(entity.get(local_key), 0))
        return entities
