"""
Bounded key → entity store for a single entity kind.
"""

from typing import Any, Iterator, Mapping, Optional

from cordwire.cache.entities import ENTITY_TYPES, EntityKind, freeze
from cordwire.logger import get_logger

logger = get_logger(__name__)


class EntityStore:
    """
    Insertion-ordered store with optional capacity.

    Merging into an existing entry keeps its original position, so eviction
    always drops the oldest *inserted* id rather than the least recently used.
    """

    def __init__(self, kind: EntityKind, capacity: Optional[int] = None):
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.kind = kind
        self.capacity = capacity
        self._entity_type = ENTITY_TYPES[kind]
        self._items: dict[str, Any] = {}
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items))

    def get(self, entity_id: str) -> Optional[Any]:
        return self._items.get(entity_id)

    def values(self) -> list[Any]:
        return list(self._items.values())

    def upsert(self, entity_id: str, partial: Mapping[str, Any]) -> Any:
        """Create the entity, or shallow-merge ``partial`` over the existing snapshot."""
        existing = self._items.get(entity_id)
        if existing is None:
            snapshot = {**partial, "id": entity_id}
        else:
            snapshot = {**existing.data, **partial, "id": entity_id}

        entity = self._entity_type(data=freeze(snapshot))
        self._items[entity_id] = entity

        if existing is None:
            self._evict_overflow()
        return entity

    def remove(self, entity_id: str) -> Optional[Any]:
        return self._items.pop(entity_id, None)

    def clear(self) -> None:
        self._items.clear()

    def _evict_overflow(self) -> None:
        if self.capacity is None:
            return
        while len(self._items) > self.capacity:
            oldest = next(iter(self._items))
            del self._items[oldest]
            self.evictions += 1
            logger.debug(f"Evicted {self.kind.value} {oldest} (capacity {self.capacity})")
