"""
Gateway intents: the bitfield sent in IDENTIFY that selects which event
groups the server will dispatch to this session.
"""

from enum import IntFlag
from typing import Iterable, Union


class Intents(IntFlag):
    GUILDS = 1 << 0
    GUILD_MEMBERS = 1 << 1
    GUILD_MODERATION = 1 << 2
    GUILD_EXPRESSIONS = 1 << 3
    GUILD_INTEGRATIONS = 1 << 4
    GUILD_WEBHOOKS = 1 << 5
    GUILD_INVITES = 1 << 6
    GUILD_VOICE_STATES = 1 << 7
    GUILD_PRESENCES = 1 << 8
    GUILD_MESSAGES = 1 << 9
    GUILD_MESSAGE_REACTIONS = 1 << 10
    GUILD_MESSAGE_TYPING = 1 << 11
    DIRECT_MESSAGES = 1 << 12
    DIRECT_MESSAGE_REACTIONS = 1 << 13
    DIRECT_MESSAGE_TYPING = 1 << 14
    MESSAGE_CONTENT = 1 << 15
    GUILD_SCHEDULED_EVENTS = 1 << 16
    AUTO_MODERATION_CONFIGURATION = 1 << 20
    AUTO_MODERATION_EXECUTION = 1 << 21

    @classmethod
    def all(cls) -> "Intents":
        value = cls(0)
        for member in cls:
            value |= member
        return value

    @classmethod
    def parse(cls, value: Union[int, str, Iterable[str], "Intents"]) -> "Intents":
        """
        Normalize user input into an Intents value.

        Accepts an int bitfield, a single intent name, or an iterable of names.
        Names are case-insensitive; unknown names raise ValueError.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            if value < 0:
                raise ValueError("Intents bitfield cannot be negative")
            return cls(value)
        if isinstance(value, str):
            value = [value]

        result = cls(0)
        for name in value:
            key = name.strip().upper()
            if key not in cls.__members__:
                raise ValueError(f"Unknown intent: {name}")
            result |= cls[key]
        return result
