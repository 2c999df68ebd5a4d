"""
Dispatch actions: how each named gateway event updates the entity cache.

Handlers register with ``@action("EVENT_NAME")`` and return the payload that
is forwarded to the event sink. Events without a handler are forwarded
verbatim so new server events never break the session.
"""

from typing import Any, Callable

from cordwire.cache import EntityCache, EntityKind
from cordwire.logger import get_logger

logger = get_logger(__name__)

ActionHandler = Callable[[EntityCache, Any], Any]

_ACTIONS: dict[str, ActionHandler] = {}


def action(*event_names: str):
    """Decorator to register a cache handler for one or more dispatch events."""

    def decorator(fn: ActionHandler) -> ActionHandler:
        for name in event_names:
            _ACTIONS[name] = fn
        return fn

    return decorator


def has_action(event_name: str) -> bool:
    return event_name in _ACTIONS


def apply(cache: EntityCache, event_name: str, data: Any) -> Any:
    """Run the handler for ``event_name`` and return the payload to forward."""
    handler = _ACTIONS.get(event_name)
    if handler is None:
        return data
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {event_name} with non-object payload")
        return data
    return handler(cache, data)


# ─── Session ─────────────────────────────────────────────────────────


@action("READY")
def handle_ready(cache: EntityCache, data: dict[str, Any]) -> dict[str, Any]:
    user = data.get("user")
    if user and "id" in user:
        data = {**data, "user": cache.upsert(EntityKind.USER, user["id"], user)}
    for guild in data.get("guilds") or []:
        if "id" in guild:
            cache.upsert(EntityKind.GUILD, guild["id"], guild)
    return data


@action("USER_UPDATE")
def handle_user_update(cache: EntityCache, data: dict[str, Any]):
    return cache.upsert(EntityKind.USER, data["id"], data)


# ─── Guilds ──────────────────────────────────────────────────────────


@action("GUILD_CREATE", "GUILD_UPDATE")
def handle_guild_upsert(cache: EntityCache, data: dict[str, Any]):
    guild_id = data["id"]
    nested = {"channels", "threads", "roles", "members"}
    guild = cache.upsert(
        EntityKind.GUILD, guild_id, {k: v for k, v in data.items() if k not in nested}
    )

    for channel in (data.get("channels") or []) + (data.get("threads") or []):
        cache.upsert(EntityKind.CHANNEL, channel["id"], {**channel, "guild_id": guild_id})
    for role in data.get("roles") or []:
        cache.upsert(EntityKind.ROLE, role["id"], {**role, "guild_id": guild_id})
    for member in data.get("members") or []:
        user = member.get("user")
        if user and "id" in user:
            cache.upsert(EntityKind.USER, user["id"], user)

    return guild


@action("GUILD_DELETE")
def handle_guild_delete(cache: EntityCache, data: dict[str, Any]):
    # unavailable=True means an outage, not that the bot left the guild
    if data.get("unavailable"):
        return cache.upsert(EntityKind.GUILD, data["id"], data)
    return cache.remove(EntityKind.GUILD, data["id"]) or data


# ─── Channels & threads ──────────────────────────────────────────────


@action("CHANNEL_CREATE", "CHANNEL_UPDATE", "THREAD_CREATE", "THREAD_UPDATE")
def handle_channel_upsert(cache: EntityCache, data: dict[str, Any]):
    return cache.upsert(EntityKind.CHANNEL, data["id"], data)


@action("CHANNEL_DELETE", "THREAD_DELETE")
def handle_channel_delete(cache: EntityCache, data: dict[str, Any]):
    return cache.remove(EntityKind.CHANNEL, data["id"]) or data


# ─── Roles ───────────────────────────────────────────────────────────


@action("GUILD_ROLE_CREATE", "GUILD_ROLE_UPDATE")
def handle_role_upsert(cache: EntityCache, data: dict[str, Any]):
    role = data["role"]
    return cache.upsert(EntityKind.ROLE, role["id"], {**role, "guild_id": data.get("guild_id")})


@action("GUILD_ROLE_DELETE")
def handle_role_delete(cache: EntityCache, data: dict[str, Any]):
    return cache.remove(EntityKind.ROLE, data["role_id"]) or data


# ─── Messages ────────────────────────────────────────────────────────


@action("MESSAGE_CREATE", "MESSAGE_UPDATE")
def handle_message_upsert(cache: EntityCache, data: dict[str, Any]):
    author = data.get("author")
    if author and "id" in author:
        cache.upsert(EntityKind.USER, author["id"], author)
    return cache.upsert(EntityKind.MESSAGE, data["id"], data)


@action("MESSAGE_DELETE")
def handle_message_delete(cache: EntityCache, data: dict[str, Any]):
    return cache.remove(EntityKind.MESSAGE, data["id"]) or data
