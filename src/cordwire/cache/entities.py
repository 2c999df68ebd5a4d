"""
Entity variants held by the cache.

Each kind is its own frozen type over a read-only snapshot of the raw
gateway fields, with accessors for the fields that kind actually has.
Shared behaviour (id, kind, cache key) comes from the ``Cacheable``
protocol rather than a common base class.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

DISCORD_EPOCH_MS = 1420070400000


class EntityKind(str, Enum):
    GUILD = "guild"
    CHANNEL = "channel"
    USER = "user"
    MESSAGE = "message"
    ROLE = "role"


def snowflake_timestamp(snowflake: str) -> datetime:
    """Creation time encoded in the top 42 bits of a snowflake id."""
    ms = (int(snowflake) >> 22) + DISCORD_EPOCH_MS
    return datetime.fromtimestamp(ms // 1000, tz=timezone.utc) + timedelta(milliseconds=ms % 1000)


def freeze(data: Mapping[str, Any]) -> Mapping[str, Any]:
    """Copy a snapshot into a read-only mapping."""
    return MappingProxyType(dict(data))


@runtime_checkable
class Cacheable(Protocol):
    kind: EntityKind

    @property
    def id(self) -> str: ...

    @property
    def data(self) -> Mapping[str, Any]: ...


@dataclass(frozen=True)
class Guild:
    data: Mapping[str, Any]
    kind = EntityKind.GUILD

    @property
    def id(self) -> str:
        return self.data["id"]

    @property
    def name(self) -> Optional[str]:
        return self.data.get("name")

    @property
    def owner_id(self) -> Optional[str]:
        return self.data.get("owner_id")

    @property
    def unavailable(self) -> bool:
        return bool(self.data.get("unavailable", False))

    @property
    def member_count(self) -> Optional[int]:
        return self.data.get("member_count")


@dataclass(frozen=True)
class Channel:
    data: Mapping[str, Any]
    kind = EntityKind.CHANNEL

    @property
    def id(self) -> str:
        return self.data["id"]

    @property
    def name(self) -> Optional[str]:
        return self.data.get("name")

    @property
    def type(self) -> Optional[int]:
        return self.data.get("type")

    @property
    def guild_id(self) -> Optional[str]:
        return self.data.get("guild_id")

    @property
    def parent_id(self) -> Optional[str]:
        return self.data.get("parent_id")

    @property
    def position(self) -> Optional[int]:
        return self.data.get("position")

    @property
    def topic(self) -> Optional[str]:
        return self.data.get("topic")

    @property
    def nsfw(self) -> bool:
        return bool(self.data.get("nsfw", False))

    @property
    def rate_limit_per_user(self) -> int:
        return self.data.get("rate_limit_per_user") or 0

    @property
    def created_at(self) -> datetime:
        return snowflake_timestamp(self.id)

    @property
    def url(self) -> str:
        if self.guild_id:
            return f"https://discord.com/channels/{self.guild_id}/{self.id}"
        return f"https://discord.com/channels/@me/{self.id}"


@dataclass(frozen=True)
class User:
    data: Mapping[str, Any]
    kind = EntityKind.USER

    @property
    def id(self) -> str:
        return self.data["id"]

    @property
    def username(self) -> Optional[str]:
        return self.data.get("username")

    @property
    def global_name(self) -> Optional[str]:
        return self.data.get("global_name")

    @property
    def bot(self) -> bool:
        return bool(self.data.get("bot", False))


@dataclass(frozen=True)
class Message:
    data: Mapping[str, Any]
    kind = EntityKind.MESSAGE

    @property
    def id(self) -> str:
        return self.data["id"]

    @property
    def channel_id(self) -> Optional[str]:
        return self.data.get("channel_id")

    @property
    def guild_id(self) -> Optional[str]:
        return self.data.get("guild_id")

    @property
    def content(self) -> str:
        return self.data.get("content") or ""

    @property
    def author_id(self) -> Optional[str]:
        author = self.data.get("author") or {}
        return author.get("id")


@dataclass(frozen=True)
class Role:
    data: Mapping[str, Any]
    kind = EntityKind.ROLE

    @property
    def id(self) -> str:
        return self.data["id"]

    @property
    def name(self) -> Optional[str]:
        return self.data.get("name")

    @property
    def guild_id(self) -> Optional[str]:
        return self.data.get("guild_id")

    @property
    def permissions(self) -> int:
        return int(self.data.get("permissions") or 0)


ENTITY_TYPES: dict[EntityKind, type] = {
    EntityKind.GUILD: Guild,
    EntityKind.CHANNEL: Channel,
    EntityKind.USER: User,
    EntityKind.MESSAGE: Message,
    EntityKind.ROLE: Role,
}
