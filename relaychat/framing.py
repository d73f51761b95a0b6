import json
from typing import Any, Dict, Union

from .config import MAX_FRAME_SIZE
from .errors import FrameTooLarge, ProtocolParseError

"""
framing.py — one JSON ChatMessage per WebSocket text frame.

Protocol (simple on purpose):
- The WebSocket layer already delimits messages, so there is no length prefix:
  each text frame is exactly one UTF-8 JSON object.
- Hard cap on frame size so a buggy peer can't make us parse silly amounts of data
  (the websockets connection enforces the same limit via max_size).
- Compact JSON, non-ASCII kept as UTF-8.

Anything that isn't a JSON object with a string `type` raises
ProtocolParseError; callers log it and drop that single frame.
"""


def encode_frame(obj: Dict[str, Any], max_size: int = MAX_FRAME_SIZE) -> str:
    """
    Serialize an envelope to compact JSON text.

    Raises:
        FrameTooLarge: the encoded frame is over `max_size` bytes. The peer would
            close the connection on it, so callers drop that one message instead.
    """
    payload = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    size = len(payload.encode("utf-8"))
    if size > max_size:
        raise FrameTooLarge(f"Frame exceeds maximum size: {size} > {max_size}")
    return payload


def decode_frame(raw: Union[str, bytes], max_size: int = MAX_FRAME_SIZE) -> Dict[str, Any]:
    """
    Parse one received frame into an envelope dict.

    Raises:
        ProtocolParseError: oversized, not UTF-8, not JSON, not an object,
            or missing a string `type`.
    """
    if isinstance(raw, (bytes, bytearray)):
        if len(raw) > max_size:
            raise ProtocolParseError(f"Frame too large: {len(raw)} > {max_size}")
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolParseError(f"Frame is not UTF-8: {exc}") from exc
    elif len(raw) > max_size:
        raise ProtocolParseError(f"Frame too large: {len(raw)} > {max_size}")

    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as exc:
        # Keep the message short; no payload echo to avoid leaking big data.
        raise ProtocolParseError(f"Invalid JSON frame: {exc}") from exc

    if not isinstance(obj, dict):
        raise ProtocolParseError(f"Frame must be a JSON object, got {type(obj).__name__}")
    if not isinstance(obj.get("type"), str):
        raise ProtocolParseError("Frame has no string 'type' field")
    return obj
