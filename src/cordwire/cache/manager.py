"""
Entity cache: one bounded store per entity kind.

Only the dispatch path writes to the cache; everything handed out is a
frozen entity over a read-only snapshot.
"""

from typing import Any, Mapping, Optional, Union

from cordwire.cache.entities import EntityKind
from cordwire.cache.store import EntityStore
from cordwire.config import CONFIG, GatewayConfig
from cordwire.logger import get_logger

logger = get_logger(__name__)

KindLike = Union[EntityKind, str]


class EntityCache:
    """Coordinator for the per-kind stores."""

    def __init__(self, config: Optional[GatewayConfig] = None):
        config = config or CONFIG
        self._stores: dict[EntityKind, EntityStore] = {
            kind: EntityStore(kind, config.capacity_for(kind.value))
            for kind in EntityKind
        }

    def store(self, kind: KindLike) -> EntityStore:
        return self._stores[EntityKind(kind)]

    def upsert(self, kind: KindLike, entity_id: str, partial: Mapping[str, Any]) -> Any:
        """
        Create or merge an entity.

        Args:
            kind: Entity kind (enum or its string value).
            entity_id: The entity's id.
            partial: Fields to set; absent fields keep their previous value.

        Returns:
            The resulting entity.
        """
        return self.store(kind).upsert(str(entity_id), partial)

    def remove(self, kind: KindLike, entity_id: str) -> Optional[Any]:
        """Remove an entity, returning its last snapshot if it was cached."""
        entity = self.store(kind).remove(str(entity_id))
        if entity is None:
            logger.debug(f"Remove of uncached {EntityKind(kind).value} {entity_id}")
        return entity

    def get(self, kind: KindLike, entity_id: str) -> Optional[Any]:
        return self.store(kind).get(str(entity_id))

    def clear(self) -> None:
        for store in self._stores.values():
            store.clear()

    def stats(self) -> dict[str, dict[str, Any]]:
        """Size, capacity and eviction counts per kind."""
        return {
            kind.value: {
                "size": len(store),
                "capacity": store.capacity,
                "evictions": store.evictions,
            }
            for kind, store in self._stores.items()
        }
