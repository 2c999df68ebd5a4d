"""
Configuration for cordwire.

``CONFIG`` is the process-wide default, loaded from the environment (and a
``.env`` file when present). Every component also accepts an explicit
``GatewayConfig`` so independent sessions can run side by side.
"""

import os
import sys
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_GATEWAY_URL = "wss://gateway.discord.gg/?v=10&encoding=json"
DEFAULT_API_URL = "https://discord.com/api/v10"

ENV_PREFIX = "CORDWIRE_"
CACHE_KINDS = ("guild", "channel", "user", "message", "role")


def _default_capacity() -> dict[str, Optional[int]]:
    # Messages are the only kind that grows without bound in practice.
    return {kind: None for kind in CACHE_KINDS} | {"message": 1000}


def _default_properties() -> dict[str, str]:
    return {"os": sys.platform, "browser": "cordwire", "device": "cordwire"}


class GatewayConfig(BaseModel):
    """Settings shared by the session, cache and REST sender."""

    token: Optional[str] = None
    gateway_url: str = DEFAULT_GATEWAY_URL
    api_base_url: str = DEFAULT_API_URL
    intents: int = 0
    heartbeat_jitter: float = Field(default=0.1, ge=0.0, le=1.0)
    reconnect_backoff_base: float = Field(default=1.0, gt=0.0)
    reconnect_backoff_max: float = Field(default=60.0, gt=0.0)
    event_queue_size: int = Field(default=10_000, ge=1)
    cache_capacity: dict[str, Optional[int]] = Field(default_factory=_default_capacity)
    identify_properties: dict[str, str] = Field(default_factory=_default_properties)
    log_level: str = "INFO"

    @field_validator("cache_capacity")
    @classmethod
    def _check_capacity(cls, value: dict[str, Optional[int]]) -> dict[str, Optional[int]]:
        for kind, capacity in value.items():
            if capacity is not None and capacity < 1:
                raise ValueError(f"cache capacity for '{kind}' must be at least 1")
        return value

    def capacity_for(self, kind: str) -> Optional[int]:
        return self.cache_capacity.get(kind)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "GatewayConfig":
        """Build a config from CORDWIRE_* environment variables."""
        load_dotenv(env_file)

        values: dict = {}
        simple = {
            "TOKEN": "token",
            "GATEWAY_URL": "gateway_url",
            "API_URL": "api_base_url",
            "INTENTS": "intents",
            "HEARTBEAT_JITTER": "heartbeat_jitter",
            "BACKOFF_BASE": "reconnect_backoff_base",
            "BACKOFF_MAX": "reconnect_backoff_max",
            "EVENT_QUEUE_SIZE": "event_queue_size",
        }
        for suffix, field_name in simple.items():
            if (raw := os.getenv(ENV_PREFIX + suffix)) is not None:
                values[field_name] = raw

        capacity = _default_capacity()
        for kind in CACHE_KINDS:
            raw = os.getenv(f"{ENV_PREFIX}CACHE_{kind.upper()}")
            if raw is None:
                continue
            capacity[kind] = None if raw.lower() in ("", "none", "unbounded") else int(raw)
        values["cache_capacity"] = capacity

        values["log_level"] = os.getenv("LOG_LEVEL", "INFO")
        return cls(**values)


CONFIG = GatewayConfig.from_env()
