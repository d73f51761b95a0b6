from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import messages as m

"""
registry.py — per-connection session state for the chat server.

Each accepted connection gets a Session with a session_id issued here. The id
is stable for the connection's lifetime and never reused while the registry
lives, so handlers hold ids instead of poking at connection internals.

Only the server's event loop touches the registry, and every method runs to
completion without awaiting, so there is no locking.
"""

IPV4_MAPPED_PREFIX = "::ffff:"


def normalize_ip(remote_address: Any) -> str:
    """
    Pull a printable IP out of a peer address.

    Accepts the (host, port, ...) tuple a socket reports or a bare string, and
    strips the IPv4-mapped IPv6 prefix so "::ffff:10.0.0.5" shows as "10.0.0.5".
    """
    if isinstance(remote_address, (tuple, list)) and remote_address:
        host = remote_address[0]
    else:
        host = remote_address
    if not host:
        return "unknown"
    host = str(host)
    if host.lower().startswith(IPV4_MAPPED_PREFIX):
        host = host[len(IPV4_MAPPED_PREFIX):]
    return host


@dataclass
class Session:
    session_id: int
    username: str
    ip: str
    connected_at: int
    connection: Any = field(default=None, repr=False, compare=False)

    def to_user_info(self) -> Dict[str, Any]:
        return m.user_info(self.username, self.ip, self.connected_at)


class SessionRegistry:
    """In-memory table: session_id → Session."""

    def __init__(self) -> None:
        self._sessions: Dict[int, Session] = {}
        self._next_id = 1

    def register(self, connection: Any, remote_address: Any = None) -> Session:
        """
        Create a session for a newly accepted connection.

        The placeholder name is "User<n>" where n counts open sessions including
        this one; the client usually replaces it with setUsername right away.
        """
        session_id = self._next_id
        self._next_id += 1
        session = Session(
            session_id=session_id,
            username=f"User{len(self._sessions) + 1}",
            ip=normalize_ip(remote_address),
            connected_at=m.now_ms(),
            connection=connection,
        )
        self._sessions[session_id] = session
        return session

    def rename(self, session_id: int, username: str) -> bool:
        """Set a new display name; blank names and unknown ids are ignored."""
        session = self._sessions.get(session_id)
        if session is None or not username:
            return False
        session.username = username
        return True

    def remove(self, session_id: int) -> Optional[Session]:
        """Drop a session and return it (None if it was already gone)."""
        return self._sessions.pop(session_id, None)

    def get(self, session_id: int) -> Optional[Session]:
        return self._sessions.get(session_id)

    def sessions(self) -> List[Session]:
        # Copy so callers can await between sends while the table changes.
        return list(self._sessions.values())

    def user_list(self) -> List[Dict[str, Any]]:
        return [s.to_user_info() for s in self._sessions.values()]

    def clear(self) -> List[Session]:
        """Empty the table, returning what was in it."""
        dropped = list(self._sessions.values())
        self._sessions.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
