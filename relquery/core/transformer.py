"""Transformers: declarative projection of entities into plain data."""

from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Union

from relquery.core.eager import EagerLoadNode, EagerLoadSpec
from relquery.core.entity import Entity
from relquery.core.pagination import Page
from relquery.validation import ConfigurationError

if TYPE_CHECKING:
    from relquery.core.registry import Registry

SELF_FIELDS = "self"

# A relation map entry: transformer class, registered entity type name,
# (transformer, context) pair, or None to use the related entity's own transformer.
RelationTarget = Union[type["Transformer"], str, tuple, None]


class Transformer:
    """Declares how one entity type is exported.

    Subclasses set ``entity`` (entity type name), optionally ``contexts``
    (tuple of names or an ``Enum``), ``relations`` (relation name ->
    child transformer), and implement ``data``.

    Example:
        >>> class TaskTransformer(Transformer):
        ...     entity = "task"
        ...     relations = {"comments": "comment"}
        ...
        ...     def data(self, task, context=None):
        ...         return {"id": task["id"], "title": task["title"]}
    """

    entity: ClassVar[str] = ""
    contexts: ClassVar[tuple[str, ...] | type[Enum]] = ()
    relations: ClassVar[dict[str, RelationTarget]] = {}

    def data(self, entity: Entity, context: str | None = None) -> dict[str, Any]:
        """Full candidate field set for ``entity``."""
        raise NotImplementedError

    @classmethod
    def context_names(cls) -> list[str]:
        if isinstance(cls.contexts, type) and issubclass(cls.contexts, Enum):
            return [str(member.value) for member in cls.contexts]
        return list(cls.contexts)

    @classmethod
    def resolve_context(cls, context: "str | Enum | None") -> str | None:
        """Validate the requested context.

        Raises:
            ConfigurationError: If the transformer is keyed by context and the context is missing or unknown
        """
        names = cls.context_names()
        if isinstance(context, Enum):
            context = str(context.value)
        if not names:
            return context
        if context is None or context not in names:
            requested = "no context" if context is None else f"context '{context}'"
            raise ConfigurationError(
                f"{cls.__name__} requires a context; got {requested}. Valid contexts: {', '.join(names)}"
            )
        return context


class TransformerEngine:
    """Registry of transformers and the ``transform`` entry point."""

    def __init__(self, registry: "Registry | None" = None):
        self.registry = registry
        self.transformers: dict[str, type[Transformer]] = {}

    def register(self, transformer: type[Transformer]) -> type[Transformer]:
        """Register a transformer for its entity type. Usable as a class decorator."""
        if not transformer.entity:
            raise ConfigurationError(f"{transformer.__name__} does not declare an entity type")
        if transformer.entity in self.transformers:
            raise ConfigurationError(f"A transformer is already registered for entity type '{transformer.entity}'")
        self.transformers[transformer.entity] = transformer
        return transformer

    def get(self, entity_type: str) -> type[Transformer]:
        if entity_type not in self.transformers:
            raise ConfigurationError(f"No transformer registered for entity type '{entity_type}'")
        return self.transformers[entity_type]

    def transform(
        self,
        obj: Entity | list[Entity] | Page | None,
        context: "str | Enum | None" = None,
        fields: dict[str, list[str]] | None = None,
        includes: list[str] | None = None,
        transformer: type[Transformer] | None = None,
    ) -> Any:
        """Convert an entity, a list of entities or a page into plain data.

        Args:
            obj: What to transform
            context: Output shape name for transformers keyed by context
            fields: Allow-lists keyed by ``"self"`` or by include path
            includes: Relation paths to embed (``"tasks.comments"``)
            transformer: Root transformer (defaults to the one registered for the entity type)

        Returns:
            Dict for an entity, list of dicts for a list, and
            ``{"data", "meta", "links"}`` for a page

        Raises:
            ConfigurationError: For invalid contexts, undeclared includes or unknown fields
        """
        fields = fields or {}
        tree = EagerLoadSpec.parse(includes or [])
        self._check_field_keys(fields, tree)

        if isinstance(obj, Page):
            return {
                "data": self._transform_many(obj.items, context, fields, tree, transformer),
                "meta": obj.meta(),
                "links": obj.links(),
            }
        if obj is None:
            return None
        if isinstance(obj, (list, tuple)):
            return self._transform_many(list(obj), context, fields, tree, transformer)
        root = transformer or self.get(obj.entity_type.name)
        self._check_tree(root, context, tree)
        return self._item(obj, root, context, fields, tree.children, "")

    def _transform_many(
        self,
        items: list[Entity],
        context: Any,
        fields: dict[str, list[str]],
        tree: EagerLoadSpec,
        transformer: type[Transformer] | None,
    ) -> list[dict[str, Any]]:
        if transformer is not None:
            self._check_tree(transformer, context, tree)
        checked: set[str] = set()
        results = []
        for item in items:
            root = transformer or self.get(item.entity_type.name)
            if transformer is None and root.entity not in checked:
                self._check_tree(root, context, tree)
                checked.add(root.entity)
            results.append(self._item(item, root, context, fields, tree.children, ""))
        return results

    @staticmethod
    def _check_field_keys(fields: dict[str, list[str]], tree: EagerLoadSpec) -> None:
        allowed = {SELF_FIELDS}

        def walk(prefix: str, nodes: dict[str, EagerLoadNode]) -> None:
            for name, node in nodes.items():
                path = f"{prefix}.{name}" if prefix else name
                allowed.add(path)
                walk(path, node.children)

        walk("", tree.children)
        for key in fields:
            if key not in allowed:
                raise ConfigurationError(
                    f"fields key '{key}' is neither 'self' nor an included relation path "
                    f"(included: {', '.join(sorted(allowed - {SELF_FIELDS})) or 'none'})"
                )

    def _child(self, parent: type[Transformer], name: str) -> tuple[type[Transformer] | None, str | None, bool]:
        """Child transformer, fixed child context, and whether a context was fixed."""
        if name not in parent.relations:
            declared = ", ".join(sorted(parent.relations)) or "none"
            raise ConfigurationError(
                f"Relation '{name}' is not declared in {parent.__name__}.relations (declared: {declared})"
            )
        target = parent.relations[name]
        if isinstance(target, tuple):
            child, child_context = target
            return self._transformer_class(child), child_context, True
        return self._transformer_class(target), None, False

    def _transformer_class(self, target: RelationTarget) -> type[Transformer] | None:
        if target is None:
            return None
        if isinstance(target, str):
            return self.get(target)
        return target

    def _check_tree(self, transformer: type[Transformer], context: Any, tree: EagerLoadSpec) -> None:
        def walk(current: type[Transformer], ctx: Any, nodes: dict[str, EagerLoadNode]) -> None:
            current.resolve_context(ctx)
            for name, node in nodes.items():
                child, child_context, fixed = self._child(current, name)
                child_ctx = child_context if fixed else ctx
                if child is not None:
                    walk(child, child_ctx, node.children)
                    continue
                # unmapped: every type the relation can yield uses its registered transformer
                for target in self._related_transformers(current.entity, name):
                    walk(target, child_ctx, node.children)

        walk(transformer, context, tree.children)

    def _related_transformers(self, entity_type: str, name: str) -> list[type[Transformer]]:
        if self.registry is None or not self.registry.has_relation(entity_type, name):
            return []
        relation = self.registry.resolve(entity_type, name)
        return [self.get(related.name) for related in self.registry.related_types(entity_type, relation)]

    def _item(
        self,
        entity: Entity,
        transformer: type[Transformer],
        context: Any,
        fields: dict[str, list[str]],
        includes: dict[str, EagerLoadNode],
        path: str,
    ) -> dict[str, Any]:
        resolved = transformer.resolve_context(context)
        data = transformer().data(entity, resolved)

        allow = fields.get(path or SELF_FIELDS)
        if allow is not None:
            unknown = [name for name in allow if name not in data]
            if unknown:
                raise ConfigurationError(
                    f"Unknown field(s) {', '.join(unknown)} for {transformer.__name__} "
                    f"(available: {', '.join(data)})"
                )
            data = {name: value for name, value in data.items() if name in allow}

        for name, node in includes.items():
            child, child_context, fixed = self._child(transformer, name)
            if not entity.relation_loaded(name) and not self._declares(entity, name):
                continue

            value = entity.relation(name)
            child_path = f"{path}.{name}" if path else name
            ctx = child_context if fixed else context

            if value is None or (isinstance(value, list) and not value):
                data[name] = []
            elif isinstance(value, list):
                data[name] = [
                    self._item(item, child or self.get(item.entity_type.name), ctx, fields, node.children, child_path)
                    for item in value
                ]
            else:
                data[name] = self._item(
                    value, child or self.get(value.entity_type.name), ctx, fields, node.children, child_path
                )
        return data

    def _declares(self, entity: Entity, name: str) -> bool:
        if self.registry is None:
            return entity.entity_type.get_relation(name) is not None
        return self.registry.has_relation(entity.entity_type.name, name)
