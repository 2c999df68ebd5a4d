"""
Payload codec: stateless translation between raw gateway frames and the
typed control messages in ``cordwire.gateway.models``.
"""

import json
from typing import Optional, Union

from pydantic import TypeAdapter, ValidationError

from cordwire.errors import MalformedFrameError
from cordwire.gateway.models import (
    GatewayMessage,
    Heartbeat,
    Identify,
    IdentifyData,
    Resume,
    ResumeData,
)

_ADAPTER: TypeAdapter = TypeAdapter(GatewayMessage)


def decode(raw: Union[str, bytes, bytearray]) -> GatewayMessage:
    """
    Parse one frame into its control message.

    Raises:
        MalformedFrameError: If the frame is not a JSON object, has no ``op``,
            carries an unknown opcode, or its fields do not fit the opcode.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"Frame is not valid JSON: {e}", raw) from None

    if not isinstance(data, dict):
        raise MalformedFrameError("Frame is not a JSON object", raw)
    if data.get("op") is None:
        raise MalformedFrameError("Frame is missing required 'op' field", raw)

    try:
        return _ADAPTER.validate_python(data)
    except ValidationError as e:
        raise MalformedFrameError(
            f"Frame with op={data.get('op')!r} failed validation: "
            f"{e.error_count()} error(s)",
            raw,
        ) from None


def encode(message: GatewayMessage) -> str:
    """Serialize a control message to a JSON text frame."""
    return message.model_dump_json()


def heartbeat(sequence: Optional[int]) -> Heartbeat:
    return Heartbeat(d=sequence)


def identify(token: str, intents: int, properties: dict[str, str]) -> Identify:
    return Identify(d=IdentifyData(token=token, intents=intents, properties=properties))


def resume(token: str, session_id: str, sequence: int) -> Resume:
    return Resume(d=ResumeData(token=token, session_id=session_id, seq=sequence))
