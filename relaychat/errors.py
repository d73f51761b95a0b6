"""
errors.py — the exception types the relay raises.

Everything derives from RelayChatError so a caller embedding the server or the
client can catch one base class. Only lifecycle failures (bind, connect) escape
to callers; per-message failures (CryptoError, ProtocolParseError,
FrameTooLarge) are caught where they happen and logged.
"""

from enum import Enum


class RelayChatError(Exception):
    """Base class for every error raised by relaychat."""


class BindError(RelayChatError):
    """The server could not bind/listen on the requested port."""


class ConnectError(RelayChatError):
    """The client could not establish a connection to the server."""


class ConnectTimeout(ConnectError):
    """No handshake result arrived before the connect timer fired."""


class ProtocolParseError(RelayChatError):
    """An inbound frame is not a valid JSON ChatMessage envelope."""


class FrameTooLarge(RelayChatError):
    """An outbound envelope serializes to more than the frame size cap."""


class CryptoFailure(str, Enum):
    MALFORMED_KEY = "malformed_key"
    MALFORMED_ENVELOPE = "malformed_envelope"
    AUTHENTICATION_FAILED = "authentication_failed"


class CryptoError(RelayChatError):
    """Encryption or decryption failed; `reason` says which way."""

    def __init__(self, reason: CryptoFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        text = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(text)
