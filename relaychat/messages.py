import time
from typing import Any, Dict, Iterable, Optional

"""
messages.py — the ChatMessage envelope and its builders.

What this module does:
- Names the six `type` tags both sides dispatch on.
- Builds envelopes with the fields every ChatMessage carries
  (type, username, message, timestamp) plus the type-specific extras
  (userList, encrypted, encryptionKey).

Envelopes are plain dicts so they go straight through json.dumps/loads.
`timestamp` is the originator's clock in milliseconds and is advisory only;
the server relays in the order it receives frames.
"""

# -----------------------
# Public message type tags
# -----------------------
MESSAGE = "message"
SYSTEM = "system"
USER_LIST = "userList"
SET_USERNAME = "setUsername"
REQUEST_USER_LIST = "requestUserList"
ENCRYPTION_KEY = "encryptionKey"

MESSAGE_TYPES = frozenset({MESSAGE, SYSTEM, USER_LIST, SET_USERNAME, REQUEST_USER_LIST, ENCRYPTION_KEY})

# Types only the server may originate; a client sending one is ignored.
SERVER_ONLY_TYPES = frozenset({SYSTEM, USER_LIST, ENCRYPTION_KEY})

SYSTEM_USERNAME = "System"

# Notice texts for `system` envelopes.
USER_JOINED_TEXT = "A new user joined the chat."
SERVER_STOPPING_TEXT = "Server is stopping."


def now_ms() -> int:
    """Current time in milliseconds (used for `timestamp`)."""
    return int(time.time() * 1000)


def new_envelope(
    msg_type: str,
    username: str = SYSTEM_USERNAME,
    message: str = "",
    timestamp: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Create a ChatMessage with the four fields every type carries.

    Callers add `userList`, `encrypted` or `encryptionKey` as needed.
    """
    return {
        "type": msg_type,
        "username": username,
        "message": message,
        "timestamp": now_ms() if timestamp is None else timestamp,
    }


def chat_message(username: str, text: str) -> Dict[str, Any]:
    """A chat line as a client sends it (plaintext; RelayClient.send encrypts)."""
    env = new_envelope(MESSAGE, username=username, message=text)
    env["encrypted"] = False
    return env


def system_message(text: str) -> Dict[str, Any]:
    return new_envelope(SYSTEM, message=text)


def user_left_text(username: str) -> str:
    return f"{username} left the chat."


def user_list_message(users: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Snapshot of who is connected: a list of {username, ip, connectedAt}."""
    env = new_envelope(USER_LIST)
    env["userList"] = list(users)
    return env


def encryption_key_message(key: str) -> Dict[str, Any]:
    env = new_envelope(ENCRYPTION_KEY)
    env["encryptionKey"] = key
    return env


def set_username_message(username: str) -> Dict[str, Any]:
    return new_envelope(SET_USERNAME, username=username)


def request_user_list_message(username: str = "") -> Dict[str, Any]:
    return new_envelope(REQUEST_USER_LIST, username=username)


def user_info(username: str, ip: str, connected_at: int) -> Dict[str, Any]:
    """One public user-list entry."""
    return {"username": username, "ip": ip, "connectedAt": connected_at}
