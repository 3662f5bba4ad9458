"""Entity instances and their loaded-relation cache."""

from enum import Enum
from typing import TYPE_CHECKING, Any

from relquery.core.entity_type import EntityType
from relquery.validation import ConfigurationError

if TYPE_CHECKING:
    from relquery.core.session import Session


class LoadState(str, Enum):
    """Lifecycle of one relation on one entity instance."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


class RelationCache:
    """Relation name -> resolved value (entity, list of entities, or None).

    Starts empty, is filled by eager or lazy loading and is never
    invalidated automatically; ``forget`` is the explicit refetch hook.
    """

    def __init__(self):
        self._values: dict[str, Any] = {}
        self._states: dict[str, LoadState] = {}

    def state(self, name: str) -> LoadState:
        return self._states.get(name, LoadState.UNLOADED)

    def mark(self, name: str, state: LoadState) -> None:
        self._states[name] = state

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value
        self._states[name] = LoadState.LOADED

    def get(self, name: str) -> Any:
        return self._values[name]

    def has(self, name: str) -> bool:
        return self.state(name) is LoadState.LOADED

    def forget(self, name: str) -> None:
        self._values.pop(name, None)
        self._states.pop(name, None)

    def names(self) -> list[str]:
        return [name for name in self._values if self.has(name)]

    def __contains__(self, name: str) -> bool:
        return self.has(name)


class Entity:
    """A typed record keyed by its primary key.

    Column values are read and written with ``entity["column"]``; relations
    are read with ``entity.relation("name")``, which returns the cached value
    or triggers a lazy load through the owning session.
    """

    def __init__(
        self,
        entity_type: EntityType,
        attributes: dict[str, Any] | None = None,
        session: "Session | None" = None,
        exists: bool = False,
    ):
        self.entity_type = entity_type
        self.attributes: dict[str, Any] = dict(attributes or {})
        self.session = session
        self.exists = exists
        self.pivot: dict[str, Any] | None = None
        self.relations = RelationCache()
        self._original: dict[str, Any] = dict(self.attributes) if exists else {}

    @property
    def key(self) -> Any:
        return self.attributes.get(self.entity_type.primary_key)

    def __getitem__(self, column: str) -> Any:
        if column not in self.attributes:
            raise KeyError(f"Entity '{self.entity_type.name}' has no attribute '{column}'")
        return self.attributes[column]

    def __setitem__(self, column: str, value: Any) -> None:
        if column == self.entity_type.primary_key and self.exists and value != self.key:
            raise ConfigurationError(
                f"Primary key '{column}' of persisted entity '{self.entity_type.name}' is immutable"
            )
        if not self.entity_type.has_column(column):
            raise ConfigurationError(f"Unknown column '{column}' on entity type '{self.entity_type.name}'")
        self.attributes[column] = value

    def __contains__(self, column: str) -> bool:
        return column in self.attributes

    def get(self, column: str, default: Any = None) -> Any:
        return self.attributes.get(column, default)

    def relation(self, name: str) -> Any:
        """Return a relation's value, lazy loading it on first access.

        Raises:
            ConfigurationError: If the relation is not registered or the entity has no session
            StrictModeViolation: If strict mode forbids lazy loading this relation
        """
        if self.relations.has(name):
            return self.relations.get(name)
        if self.session is None:
            raise ConfigurationError(
                f"Relation '{name}' of entity '{self.entity_type.name}' is not loaded and the entity "
                f"is not attached to a session"
            )
        return self.session.lazy.get(self, name)

    def set_relation(self, name: str, value: Any) -> None:
        self.relations.set(name, value)

    def relation_loaded(self, name: str) -> bool:
        return self.relations.has(name)

    @property
    def loaded_relations(self) -> list[str]:
        return self.relations.names()

    @property
    def dirty(self) -> dict[str, Any]:
        """Attributes changed since the entity was loaded or last saved."""
        return {
            column: value
            for column, value in self.attributes.items()
            if column not in self._original or self._original[column] != value
        }

    def is_dirty(self) -> bool:
        return bool(self.dirty)

    def sync_original(self) -> None:
        self._original = dict(self.attributes)

    def set_computed(self, name: str, value: Any) -> None:
        """Attach a derived attribute (e.g. a relation count) that is never written back."""
        self.attributes[name] = value
        self._original[name] = value

    def _require_session(self) -> "Session":
        if self.session is None:
            raise ConfigurationError(f"Entity '{self.entity_type.name}' is not attached to a session")
        return self.session

    def save(self) -> "Entity":
        return self._require_session().save(self)

    def delete(self) -> None:
        self._require_session().delete(self)

    def refresh(self) -> "Entity":
        return self._require_session().refresh(self)

    def to_dict(self) -> dict[str, Any]:
        """Attributes plus loaded relations, recursively."""
        data = dict(self.attributes)
        for name in self.relations.names():
            value = self.relations.get(name)
            if isinstance(value, list):
                data[name] = [item.to_dict() for item in value]
            elif isinstance(value, Entity):
                data[name] = value.to_dict()
            else:
                data[name] = value
        return data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        if self is other:
            return True
        return (
            self.entity_type.name == other.entity_type.name
            and self.key is not None
            and self.key == other.key
        )

    def __hash__(self) -> int:
        # the key is assigned on insert, so it cannot take part in the hash
        return hash(self.entity_type.name)

    def __repr__(self) -> str:
        return f"<{self.entity_type.name} {self.entity_type.primary_key}={self.key!r}>"
