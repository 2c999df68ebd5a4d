"""
Entity cache for cordwire.

Bounded per-kind stores mutated only by the gateway dispatch path.
"""

from cordwire.cache.entities import (
    Cacheable,
    Channel,
    EntityKind,
    Guild,
    Message,
    Role,
    User,
    snowflake_timestamp,
)
from cordwire.cache.manager import EntityCache
from cordwire.cache.store import EntityStore

__all__ = [
    "Cacheable",
    "Channel",
    "EntityCache",
    "EntityKind",
    "EntityStore",
    "Guild",
    "Message",
    "Role",
    "User",
    "snowflake_timestamp",
]
