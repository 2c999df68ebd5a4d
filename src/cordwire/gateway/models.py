"""
Pydantic models for the gateway wire protocol.

Each control opcode gets its own model carrying only the fields valid for
it; ``GatewayMessage`` is the tagged union the codec decodes into.
"""

from enum import IntEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Opcode(IntEnum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class _Frame(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


# ─── Server → Client ─────────────────────────────────────────────────


class Dispatch(_Frame):
    """A named domain event with its sequence number."""

    op: Literal[0] = 0
    t: str
    s: Optional[int] = None
    d: Any = None


class HelloData(_Frame):
    heartbeat_interval: int = Field(gt=0)


class Hello(_Frame):
    op: Literal[10] = 10
    d: HelloData


class HeartbeatAck(_Frame):
    op: Literal[11] = 11


class Reconnect(_Frame):
    op: Literal[7] = 7


class InvalidSession(_Frame):
    """``d`` tells whether the session may still be resumed."""

    op: Literal[9] = 9
    d: Optional[bool] = False

    @property
    def resumable(self) -> bool:
        return bool(self.d)


# ─── Client → Server ─────────────────────────────────────────────────


class Heartbeat(_Frame):
    """Liveness proof carrying the last seen sequence. Also sent by the server to request one."""

    op: Literal[1] = 1
    d: Optional[int] = None


class IdentifyData(_Frame):
    token: str
    intents: int = 0
    properties: dict[str, str] = Field(default_factory=dict)


class Identify(_Frame):
    op: Literal[2] = 2
    d: IdentifyData


class ResumeData(_Frame):
    token: str
    session_id: str
    seq: int


class Resume(_Frame):
    op: Literal[6] = 6
    d: ResumeData


GatewayMessage = Annotated[
    Union[
        Dispatch,
        Heartbeat,
        Identify,
        Resume,
        Reconnect,
        InvalidSession,
        Hello,
        HeartbeatAck,
    ],
    Field(discriminator="op"),
]
