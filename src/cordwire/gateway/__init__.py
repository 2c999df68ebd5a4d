"""
Gateway protocol layer: wire models, codec, transport, heartbeat supervision
and the session state machine.
"""

from cordwire.gateway.heartbeat import HeartbeatSupervisor
from cordwire.gateway.models import GatewayMessage, Opcode
from cordwire.gateway.session import GatewaySession, Phase, SessionState
from cordwire.gateway.transport import Transport, WebSocketTransport

__all__ = [
    "GatewayMessage",
    "GatewaySession",
    "HeartbeatSupervisor",
    "Opcode",
    "Phase",
    "SessionState",
    "Transport",
    "WebSocketTransport",
]
