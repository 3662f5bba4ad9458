"""Lazy loading of relations on first access."""

import logging
from typing import TYPE_CHECKING, Any

from relquery.core.eager import EagerLoadSpec
from relquery.core.entity import Entity, LoadState
from relquery.validation import StrictModeViolation

if TYPE_CHECKING:
    from relquery.core.session import Session

logger = logging.getLogger(__name__)


class LazyLoader:
    """Resolves a relation that was not eager loaded, then caches it.

    Per entity and relation: UNLOADED -> LOADING -> LOADED, or ERRORED when
    strict mode forbids the load. A LOADED relation is served from the
    cache from then on.
    """

    def __init__(self, session: "Session"):
        self.session = session

    def get(self, entity: Entity, name: str) -> Any:
        """Return the relation value, loading it if needed.

        Raises:
            ConfigurationError: If the relation is not registered on the entity type
            StrictModeViolation: If the entity type is strict and the relation is not allow-listed
        """
        cache = entity.relations
        if cache.has(name):
            return cache.get(name)

        entity_type = entity.entity_type
        self.session.registry.resolve(entity_type.name, name)

        if entity_type.strict_mode and name not in entity_type.allowed_lazy:
            cache.mark(name, LoadState.ERRORED)
            raise StrictModeViolation(entity_type.name, name)

        logger.debug("Lazy loading %s.%s for %r", entity_type.name, name, entity)
        cache.mark(name, LoadState.LOADING)
        try:
            self.session.eager.load([entity], EagerLoadSpec.parse([name]))
        except Exception:
            cache.mark(name, LoadState.UNLOADED)
            raise
        return cache.get(name)
