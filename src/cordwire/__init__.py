"""
cordwire: client-side session manager for a persistent WebSocket gateway.

Keeps one resumable session alive through heartbeats and reconnects, and
feeds dispatched events into a bounded entity cache and an event channel.
"""

from cordwire.cache import EntityCache, EntityKind
from cordwire.client import Client
from cordwire.config import CONFIG, GatewayConfig
from cordwire.errors import (
    GatewayConnectionError,
    GatewayError,
    MalformedFrameError,
    ProtocolViolation,
    RestError,
    SessionClosedError,
    SessionInvalidated,
    ZombieConnection,
)
from cordwire.events import EventDispatcher
from cordwire.gateway import GatewaySession, HeartbeatSupervisor, Phase
from cordwire.intents import Intents

__version__ = "0.1.0"

__all__ = [
    "CONFIG",
    "Client",
    "EntityCache",
    "EntityKind",
    "EventDispatcher",
    "GatewayConfig",
    "GatewayConnectionError",
    "GatewayError",
    "GatewaySession",
    "HeartbeatSupervisor",
    "Intents",
    "MalformedFrameError",
    "Phase",
    "ProtocolViolation",
    "RestError",
    "SessionClosedError",
    "SessionInvalidated",
    "ZombieConnection",
]
