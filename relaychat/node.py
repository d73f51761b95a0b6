import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException
from websockets.protocol import State

from . import crypto
from . import messages as m
from .config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_HOST, MAX_FRAME_SIZE
from .errors import (
    BindError,
    ConnectError,
    ConnectTimeout,
    CryptoError,
    FrameTooLarge,
    ProtocolParseError,
    RelayChatError,
)
from .framing import decode_frame, encode_frame
from .netinfo import advertised_hostname
from .registry import Session, SessionRegistry

"""
node.py — broadcast server + relay client for the chat room.

Server side:
- One ChatServer per room. start() makes a ServerContext (fresh AES key + empty
  session registry) *before* the listener binds, so no connection can ever
  arrive without a key to hand it.
- Every inbound frame goes through dispatch(ctx, session, msg), a plain
  type → handler table. It doesn't need a live socket, which keeps the state
  machine easy to test.
- Broadcast is best-effort: serialize once, push to every OPEN connection,
  skip the rest. A dead peer's own handler cleans it up.

Client side:
- RelayClient.connect() is a single wait_for() race between the WebSocket
  handshake and a timer; whichever finishes first wins and the other is cancelled.
- The client keeps the key it was given, encrypts outgoing chat text,
  decrypts incoming text, then hands messages to the registered handlers.

Everything runs on one asyncio loop, and registry updates never span an await,
so none of this needs locks.
"""

log = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]
CloseHandler = Callable[[], Union[None, Awaitable[None]]]


async def _call(handler: Callable[..., Any], *args: Any) -> None:
    """Run a sync or async callback."""
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


# -------------------------
# Server
# -------------------------

@dataclass
class ServerContext:
    """State for one server run: the room key and who is connected."""
    key: str
    registry: SessionRegistry = field(default_factory=SessionRegistry)

    @classmethod
    def create(cls) -> "ServerContext":
        return cls(key=crypto.generate_key())


class ChatServer:
    """
    Single-room relay:
      - Hands every new connection the room key and the current user list.
      - Relays chat text (re-encrypted under the room key) to everyone but the sender.
      - Owns display names; clients can't post under someone else's name.
    """
    def __init__(self, port: int, host: str = DEFAULT_HOST, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self.host = host
        self._port = port
        self.max_frame_size = max_frame_size
        self._server: Optional[Server] = None
        self._context: Optional[ServerContext] = None
        self._handlers = {
            m.MESSAGE: self._handle_chat,
            m.SET_USERNAME: self._handle_set_username,
            m.REQUEST_USER_LIST: self._handle_request_user_list,
        }

    # --- lifecycle ---

    async def start(self) -> None:
        """Generate the room key, then bind and start accepting connections."""
        if self._server is not None:
            log.warning("Chat server already running on port %s", self.port)
            return

        self._context = ServerContext.create()
        log.info("Session key generated")
        try:
            self._server = await serve(
                self._handle_connection, self.host, self._port, max_size=self.max_frame_size
            )
        except OSError as exc:
            self._context = None
            raise BindError(f"Failed to start chat server on port {self._port}: {exc}") from exc
        log.info("Chat server listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        """Tell everyone we're going, close every connection, drop the key. Idempotent."""
        server, ctx = self._server, self._context
        if server is None or ctx is None:
            return

        await self.broadcast(ctx, m.system_message(m.SERVER_STOPPING_TEXT))

        # Clear the table first so the per-connection cleanup has nothing to announce.
        dropped = ctx.registry.clear()
        self._server = None
        self._context = None
        await asyncio.gather(
            *(s.connection.close(1001, "server stopping") for s in dropped if s.connection is not None),
            return_exceptions=True,
        )
        server.close()
        await server.wait_closed()
        log.info("Chat server stopped")

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int:
        """Bound port (resolves port 0 to the one the OS picked)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self._port

    @property
    def hostname(self) -> str:
        """Address other machines should use to reach this server."""
        return advertised_hostname()

    @property
    def client_count(self) -> int:
        return len(self._context.registry) if self._context else 0

    @property
    def context(self) -> Optional[ServerContext]:
        return self._context

    # --- connection handling ---

    async def _handle_connection(self, connection: ServerConnection) -> None:
        """Per-connection loop: register, read frames, dispatch, clean up."""
        ctx = self._context
        if ctx is None:
            await connection.close(1001, "server stopping")
            return

        session = await self.on_connect(ctx, connection)
        try:
            async for raw in connection:
                try:
                    msg = decode_frame(raw, self.max_frame_size)
                except ProtocolParseError as exc:
                    log.warning("Dropping malformed frame from session %s: %s", session.session_id, exc)
                    continue
                try:
                    await self.dispatch(ctx, session, msg)
                except RelayChatError as exc:
                    log.warning("Dropping %r from session %s: %s", msg.get("type"), session.session_id, exc)
        except ConnectionClosedError as exc:
            log.info("Session %s closed with error: %s", session.session_id, exc)
        finally:
            await self.on_disconnect(ctx, session)

    async def on_connect(self, ctx: ServerContext, connection: Any) -> Session:
        session = ctx.registry.register(connection, getattr(connection, "remote_address", None))
        log.info("Session %s connected from %s as %s", session.session_id, session.ip, session.username)

        await self.broadcast(ctx, m.system_message(m.USER_JOINED_TEXT), exclude=session.session_id)
        await self._deliver(session, self._encode(m.encryption_key_message(ctx.key)))
        await self.send_user_list(ctx, session)
        await self.broadcast_user_list(ctx)
        return session

    async def on_disconnect(self, ctx: ServerContext, session: Session) -> None:
        departed = ctx.registry.remove(session.session_id)
        if departed is None:
            # Already cleared by stop().
            return
        log.info("Session %s (%s) disconnected", departed.session_id, departed.username)
        await self.broadcast(ctx, m.system_message(m.user_left_text(departed.username)))
        await self.broadcast_user_list(ctx)

    # --- dispatch ---

    async def dispatch(self, ctx: ServerContext, session: Session, msg: Dict[str, Any]) -> None:
        """Route one decoded envelope by its `type`."""
        msg_type = msg.get("type")
        handler = self._handlers.get(msg_type)
        if handler is None:
            # system / userList / encryptionKey are server → client only.
            log.debug("Ignoring %r from session %s", msg_type, session.session_id)
            return
        await handler(ctx, session, msg)

    async def _handle_chat(self, ctx: ServerContext, session: Session, msg: Dict[str, Any]) -> None:
        text = msg.get("message", "")
        if not isinstance(text, str):
            log.warning("Dropping message with non-text body from session %s", session.session_id)
            return

        # The registry, not the client, decides who said it.
        msg["username"] = session.username
        msg.setdefault("timestamp", m.now_ms())

        if msg.get("encrypted"):
            # Sender already sealed it under the room key; open it so we can re-seal
            # once. If that fails, pass it through untouched and let receivers report it.
            if not crypto.is_encrypted(text):
                log.warning("Session %s flagged a non-envelope message as encrypted", session.session_id)
                await self.broadcast(ctx, msg, exclude=session.session_id)
                return
            try:
                text = crypto.decrypt(text, ctx.key)
            except CryptoError as exc:
                log.warning("Could not open message from session %s: %s", session.session_id, exc)
                await self.broadcast(ctx, msg, exclude=session.session_id)
                return

        msg["message"] = text
        msg["encrypted"] = False
        if ctx.key and text:
            try:
                msg["message"] = crypto.encrypt(text, ctx.key)
                msg["encrypted"] = True
            except CryptoError as exc:
                log.error("Message encryption failed: %s", exc)

        log.debug("Relaying message from session %s (%s)", session.session_id, session.username)
        await self.broadcast(ctx, msg, exclude=session.session_id)

    async def _handle_set_username(self, ctx: ServerContext, session: Session, msg: Dict[str, Any]) -> None:
        name = msg.get("username")
        name = name.strip() if isinstance(name, str) else ""
        old = session.username
        if ctx.registry.rename(session.session_id, name):
            log.info("Session %s renamed: %s -> %s", session.session_id, old, name)
        await self.broadcast_user_list(ctx)

    async def _handle_request_user_list(self, ctx: ServerContext, session: Session, msg: Dict[str, Any]) -> None:
        await self.send_user_list(ctx, session)

    # --- sending ---

    async def broadcast(self, ctx: ServerContext, msg: Dict[str, Any], exclude: Optional[int] = None) -> None:
        """Best-effort write to every session except `exclude` (a session id)."""
        data = self._encode(msg)
        if data is None:
            return
        for session in ctx.registry.sessions():
            if exclude is not None and session.session_id == exclude:
                continue
            await self._deliver(session, data)

    async def send_user_list(self, ctx: ServerContext, session: Session) -> None:
        await self._deliver(session, self._encode(m.user_list_message(ctx.registry.user_list())))

    async def broadcast_user_list(self, ctx: ServerContext) -> None:
        await self.broadcast(ctx, m.user_list_message(ctx.registry.user_list()))

    def _encode(self, msg: Dict[str, Any]) -> Optional[str]:
        """Serialize for sending, or None (logged) when it won't fit in one frame."""
        try:
            return encode_frame(msg, self.max_frame_size)
        except FrameTooLarge as exc:
            # A sealed chat body is about twice its plaintext size.
            log.warning("Dropping outbound %r: %s", msg.get("type"), exc)
            return None

    async def _deliver(self, session: Session, data: Optional[str]) -> None:
        connection = session.connection
        if data is None or connection is None or connection.state is not State.OPEN:
            return
        try:
            await connection.send(data)
        except ConnectionClosed as exc:
            log.debug("Send to session %s skipped, connection closed: %s", session.session_id, exc)


# -------------------------
# Client
# -------------------------

class RelayClient:
    """
    Connects to a ChatServer and speaks ChatMessage envelopes:
      - Stores the room key the server sends (never forwarded to handlers).
      - Encrypts outgoing chat text, decrypts incoming chat text.
      - Forgets the key on disconnect; a reconnect gets a fresh copy.
    """
    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        max_frame_size: int = MAX_FRAME_SIZE,
    ) -> None:
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.max_frame_size = max_frame_size
        self._ws: Optional[ClientConnection] = None
        self._connected = False
        self._key: Optional[str] = None
        self._key_ready = asyncio.Event()
        self._handlers: List[Handler] = []
        self._close_handlers: List[CloseHandler] = []
        self._reader: Optional[asyncio.Task] = None

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def on_message(self, handler: Handler) -> None:
        """Register a handler; all handlers see every delivered message, in order."""
        self._handlers.append(handler)

    def on_close(self, handler: CloseHandler) -> None:
        """Register a callback for when the server drops the connection."""
        self._close_handlers.append(handler)

    # --- lifecycle ---

    async def connect(self) -> None:
        """
        Open the WebSocket, racing the handshake against connect_timeout.

        Raises:
            ConnectTimeout: nothing resolved in time; the attempt is cancelled.
            ConnectError: refused, reset, or closed before the handshake finished.
        """
        if self._connected:
            return
        log.info("Connecting to %s", self.url)
        try:
            ws = await asyncio.wait_for(self._open(), timeout=self.connect_timeout)
        except asyncio.TimeoutError as exc:
            raise ConnectTimeout(
                f"Connection to {self.host}:{self.port} timed out after {self.connect_timeout:g}s. "
                f"Is the server running?"
            ) from exc
        except (OSError, EOFError, WebSocketException) as exc:
            raise ConnectError(f"Cannot connect to server {self.host}:{self.port}: {exc}") from exc

        self._ws = ws
        self._connected = True
        self._reader = asyncio.create_task(self._reader_loop(ws))
        log.info("Connected to %s", self.url)

    async def _open(self) -> ClientConnection:
        # The outer wait_for owns the deadline, so websockets' own open_timeout is off.
        return await connect(self.url, open_timeout=None, max_size=self.max_frame_size)

    async def disconnect(self) -> None:
        """Close the transport and forget the connection state and the key."""
        ws, reader = self._ws, self._reader
        self._reset()
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if ws is not None:
            await ws.close()
            log.info("Disconnected from %s", self.url)

    def _reset(self) -> None:
        self._ws = None
        self._reader = None
        self._connected = False
        self._key = None
        self._key_ready.clear()

    async def wait_for_key(self, timeout: Optional[float] = None) -> bool:
        """Wait until the server's key arrives; False if `timeout` runs out first."""
        try:
            await asyncio.wait_for(self._key_ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # --- sending ---

    async def send(self, msg: Dict[str, Any]) -> None:
        """Send an envelope; chat text is sealed under the room key if we have it."""
        if not self._connected or self._ws is None:
            log.warning("Not connected; dropping %r message", msg.get("type"))
            return

        out = dict(msg)
        if out.get("type") == m.MESSAGE and out.get("message") and self._key:
            try:
                out["message"] = crypto.encrypt(out["message"], self._key)
                out["encrypted"] = True
            except CryptoError as exc:
                log.error("Message encryption failed, sending as-is: %s", exc)

        try:
            data = encode_frame(out, self.max_frame_size)
        except FrameTooLarge as exc:
            log.warning("Not sending %r message: %s", out.get("type"), exc)
            return
        try:
            await self._ws.send(data)
        except ConnectionClosed as exc:
            log.warning("Send failed, connection closed: %s", exc)

    async def send_chat(self, text: str, username: str = "") -> None:
        await self.send(m.chat_message(username, text))

    async def set_username(self, username: str) -> None:
        await self.send(m.set_username_message(username))

    async def request_user_list(self) -> None:
        await self.send(m.request_user_list_message())

    # --- receiving ---

    async def _reader_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    msg = decode_frame(raw, self.max_frame_size)
                except ProtocolParseError as exc:
                    log.warning("Dropping malformed frame: %s", exc)
                    continue
                await self._dispatch(msg)
        except ConnectionClosed as exc:
            log.info("Connection to %s closed: %s", self.url, exc)
        finally:
            # Only report a close we didn't ask for; disconnect() already reset.
            if self._ws is ws:
                self._reset()
                log.info("Server closed the connection")
                for handler in list(self._close_handlers):
                    try:
                        await _call(handler)
                    except Exception:
                        log.exception("Close handler failed")

    async def _dispatch(self, msg: Dict[str, Any]) -> None:
        delivered = self.intercept(msg)
        if delivered is None:
            return
        for handler in list(self._handlers):
            try:
                await _call(handler, delivered)
            except Exception:
                log.exception("Message handler failed")

    def intercept(self, msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Protocol-level handling before handlers run.

        Returns the message to deliver, or None when it was consumed here
        (the encryptionKey hand-off).
        """
        if msg.get("type") == m.ENCRYPTION_KEY:
            key = msg.get("encryptionKey")
            if isinstance(key, str) and key:
                self._key = key
                self._key_ready.set()
                log.info("Received room encryption key")
            else:
                log.warning("encryptionKey message carried no key")
            return None

        if msg.get("encrypted") and self._key:
            text = msg.get("message", "")
            if not crypto.is_encrypted(text):
                log.warning("Message flagged encrypted is not an envelope; delivering as-is")
                return msg
            try:
                msg["message"] = crypto.decrypt(text, self._key)
                msg["encrypted"] = False
            except CryptoError as exc:
                # Deliver the ciphertext so the failure is visible instead of silent.
                log.error("Message decryption failed: %s", exc)
        return msg
