"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps one raw byte-stream socket with the framed message API
that handlers use: receive() one message, reply() with one message.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

When you send data over TCP, it might arrive in different chunks than
you sent it. TCP only guarantees that bytes arrive IN ORDER and INTACT.

    Peer sends:
        reply(b"HELLO")     ->  {"length":5}\\nHEADER_END\\nHELLO

    We might receive ANY of these:
        recv() -> '{"length":5}\\nHEADER_END\\nHELLO'    (all at once)
        recv() -> '{"leng'                             (partial header)
        recv() -> 'th":5}\\nHEADER_END\\nHE'              (rest + some body)
        recv() -> 'LLO'                                (rest of body)

So receive() keeps reading and feeding a MessageDecoder until it reports
a complete message. Anything read past the end of that message is kept in
_buffer and used first by the next receive().

=============================================================================
TIMEOUTS: TWO LAYERS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────┐
    │  SOCKET TIMEOUT (idle connection)                               │
    │  socket.settimeout(timeout), applied when the connection opens  │
    │  └── restored after every receive()/reply()                     │
    ├─────────────────────────────────────────────────────────────────┤
    │  DEADLINE (one message)                                         │
    │  deadline = monotonic() + timeout, computed once per call       │
    │  └── before each recv()/sendall() the socket timeout is cut     │
    │      down to the time left until the deadline                   │
    │  └── bounds a message that trickles in one byte at a time       │
    └─────────────────────────────────────────────────────────────────┘

A whole receive() or reply() therefore never runs longer than timeout,
however the bytes are spread out. Both layers surface as FramingTimeout.

=============================================================================
CONNECTION STATES
=============================================================================

    NEW ──connect()──► OPEN ◄──────────────┐
                        │                  │
              receive() │  reply()         │ call finished
                        ▼                  │
                RECEIVING / REPLYING ──────┘
                        │
              close()   │   (from any state)
                        ▼
                      CLOSED   (terminal, never reused)

Accepted connections start OPEN. Client connections start NEW and become
OPEN once connect() succeeds.

=============================================================================
"""

import socket
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Union

from ..config import NO_TIMEOUT
from ..errors import (
    ConnectionClosedError,
    ConnectionStateError,
    FramingTimeout,
    IncompleteMessage,
)
from ..protocol import (
    CHUNK_SIZE,
    DEFAULT_MAX_HEADER_SIZE,
    Message,
    MessageDecoder,
    encode_header,
    iter_chunks,
)


logger = logging.getLogger(__name__)

Payload = Union[bytes, bytearray, memoryview, str, None]


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"                # Socket exists but is not connected yet
    OPEN = "open"              # Connected, idle between messages
    RECEIVING = "receiving"    # Inside receive()
    REPLYING = "replying"      # Inside reply()
    CLOSED = "closed"          # Socket released, terminal


@dataclass(eq=False)
class Connection:
    """
    One open byte-stream socket exchanging framed messages.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. FRAMING                                                          │
    │     └── receive(): reassemble one message from partial reads         │
    │     └── reply(): write header, then stream the body in chunks        │
    │                                                                      │
    │  2. TIMEOUT MANAGEMENT                                               │
    │     └── socket timeout per call, deadline per message                │
    │                                                                      │
    │  3. STATE TRACKING                                                   │
    │     └── refuse to operate on NEW or CLOSED connections               │
    │                                                                      │
    │  4. CLOSE                                                            │
    │     └── idempotent, safe to call from another thread to abort        │
    │         a blocked receive()/reply()                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Equality is identity: two Connection objects are never "the same"
    connection, which lets the admission registry store them in a set.

    Attributes:
        socket: The underlying socket.
        address: Remote (host, port), None until connected.
        timeout: Seconds, or NO_TIMEOUT.
        id: Short unique identifier (for logging).
        state: Current ConnectionState.
        created_at: Timestamp when the connection object was created.
        last_activity: Timestamp of the last successful read or write.
        messages_received / messages_sent: Completed message counters.
    """

    # Required parameters
    socket: socket.socket
    address: Optional[tuple] = None

    # Configuration (passed from ServerConfig or the client)
    timeout: Optional[float] = NO_TIMEOUT
    max_header_size: int = DEFAULT_MAX_HEADER_SIZE

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    messages_received: int = 0
    messages_sent: int = 0

    # Bytes read past the end of the previous message
    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        # 0 would make the socket non-blocking; like negative values it means "no timeout"
        if self.timeout is not NO_TIMEOUT and self.timeout <= 0:
            self.timeout = NO_TIMEOUT

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @classmethod
    def create(
        cls,
        timeout: Optional[float] = NO_TIMEOUT,
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
    ) -> "Connection":
        """Create an unconnected (NEW) connection for outbound use."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        return cls(socket=sock, timeout=timeout, max_header_size=max_header_size)

    def connect(self, address: tuple) -> "Connection":
        """
        Connect a NEW connection to a remote address.

        The timeout is applied before connecting, so it also bounds the
        TCP handshake. The socket is bound to an ephemeral local port first,
        on all IPv4 interfaces; connections are AF_INET only, like the
        server side.

        Args:
            address: (host, port) to connect to.

        Returns:
            self, now OPEN.

        Raises:
            ConnectionStateError: If the connection is not NEW.
            FramingTimeout: If the connect does not finish within timeout.
            OSError: If the connect fails (refused, unreachable, ...).
        """
        if self.state is not ConnectionState.NEW:
            self._ensure_not_closed()
            raise ConnectionStateError(f"[{self.id}] Cannot connect in state {self.state.value}")

        self.apply_timeout()

        try:
            self.socket.bind(("", 0))
            self.socket.connect(address)
        except socket.timeout as e:
            self.close()
            raise FramingTimeout(f"Connect to {address[0]}:{address[1]} timed out") from e
        except OSError:
            self.close()
            raise

        self.address = self.socket.getpeername()
        self.state = ConnectionState.OPEN
        self.last_activity = time.time()

        logger.debug(f"[{self.id}] Connected to {self.address[0]}:{self.address[1]}")
        return self

    def apply_timeout(self) -> None:
        """Set the socket-level timeout, if one is configured."""
        if self.timeout is not NO_TIMEOUT:
            self.socket.settimeout(self.timeout)

    def _restore_timeout(self) -> None:
        # Per-call timeouts shrink toward the deadline; put the configured one back
        if self.timeout is NO_TIMEOUT or self.is_closed:
            return
        try:
            self.socket.settimeout(self.timeout)
        except OSError:
            pass  # Closed by another thread meanwhile

    # =========================================================================
    # PROPERTIES: Convenient accessors
    # =========================================================================

    @property
    def remote_host(self) -> Optional[str]:
        return self.address[0] if self.address else None

    @property
    def remote_port(self) -> Optional[int]:
        return self.address[1] if self.address else None

    @property
    def is_closed(self) -> bool:
        """True if close() was called or the raw socket was closed directly."""
        return self.state is ConnectionState.CLOSED or self.socket.fileno() == -1

    @property
    def age(self) -> float:
        """Get connection age in seconds."""
        return time.time() - self.created_at

    @property
    def idle_time(self) -> float:
        """Get time since last activity in seconds."""
        return time.time() - self.last_activity

    # =========================================================================
    # READING: Get one complete message from the socket
    # =========================================================================

    def receive(self) -> Message:
        """
        Receive one complete message.

        ┌─────────────────────────────────────────────────────────────────┐
        │                      receive() Flow                             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   deadline = now + timeout          (once, if timeout set)      │
        │        │                                                         │
        │   feed leftover bytes from the previous message                 │
        │        │                                                         │
        │   while not complete:                                           │
        │       deadline passed? ──► FramingTimeout                       │
        │       recv(time left) ──► b""? ──► IncompleteMessage           │
        │       decoder.feed(chunk)                                       │
        │        │                                                         │
        │   keep bytes past the end for the next call                     │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘

        Returns:
            The complete Message.

        Raises:
            FramingTimeout: Socket timeout or deadline elapsed.
            MalformedHeader: The header does not parse or has no valid length.
            IncompleteMessage: The peer closed before the body was complete.
            ConnectionClosedError: The connection is (or got) closed.
            ConnectionStateError: The connection is not connected or busy.
        """
        self._ensure_usable()
        self.state = ConnectionState.RECEIVING

        deadline = self._deadline()
        decoder = MessageDecoder(
            max_header_size=self.max_header_size,
            remote_address=self.address,
        )

        try:
            # ─────────────────────────────────────────────────────────────
            # STEP 1: Bytes left over from the previous message
            # ─────────────────────────────────────────────────────────────
            pending, self._buffer = self._buffer, b""
            complete = decoder.feed(pending)

            # ─────────────────────────────────────────────────────────────
            # STEP 2: Read until the decoder has the whole message
            # ─────────────────────────────────────────────────────────────
            while not complete:
                chunk = self._recv(deadline)
                if not chunk:
                    raise IncompleteMessage(
                        decoder.total_length, decoder.body_size, started=decoder.started
                    )

                complete = decoder.feed(chunk)

            # ─────────────────────────────────────────────────────────────
            # STEP 3: Keep anything that belongs to the next message
            # ─────────────────────────────────────────────────────────────
            self._buffer = decoder.leftover
            self.messages_received += 1

            message = decoder.result()
            logger.debug(f"[{self.id}] Received message with {message.total_length} byte body")
            return message

        finally:
            if deadline is not None:
                self._restore_timeout()
            self._finish(ConnectionState.RECEIVING)

    def _recv(self, deadline: Optional[float] = None) -> bytes:
        """
        Receive up to CHUNK_SIZE bytes, waiting no longer than the deadline.

        Returns:
            Received bytes, or empty bytes if the peer closed or reset.
        """
        self._bound_to_deadline(deadline, "receive")

        try:
            data = self.socket.recv(CHUNK_SIZE)
        except socket.timeout as e:
            raise FramingTimeout(f"[{self.id}] Read timed out after {self.timeout}s") from e
        except (ConnectionResetError, BrokenPipeError):
            data = b""
        except OSError as e:
            if self.is_closed:
                raise ConnectionClosedError(f"[{self.id}] Connection closed during receive") from e
            raise

        if not data and self.state is ConnectionState.CLOSED:
            # close() from another thread woke us up
            raise ConnectionClosedError(f"[{self.id}] Connection closed during receive")

        if data:
            self.last_activity = time.time()
        return data

    # =========================================================================
    # WRITING: Send one message to the peer
    # =========================================================================

    def reply(self, payload: Payload = None, header: Optional[dict] = None) -> None:
        """
        Send one message.

        Writes the header and separator, then streams the body in
        CHUNK_SIZE pieces so a large payload never has to be copied into
        one giant buffer together with its header.

        Args:
            payload: Body as bytes or another buffer, or str (encoded as UTF-8).
                     None sends an empty body.
            header: Extra header fields to send. "length" is always set
                    to the real body length.

        Raises:
            FramingTimeout: Socket timeout or deadline elapsed.
            ConnectionClosedError: The connection is (or got) closed.
            ConnectionStateError: The connection is not connected or busy.
            OSError: The peer went away mid-write.
        """
        if payload is None:
            body = b""
        elif isinstance(payload, str):
            body = payload.encode("utf-8")
        else:
            # Byte view: len() must count bytes even for typed buffers (array, numpy)
            body = memoryview(payload).cast("B")

        self._ensure_usable()
        self.state = ConnectionState.REPLYING

        deadline = self._deadline()
        total = len(body)

        try:
            self._send(encode_header(total, header), deadline)

            for chunk in iter_chunks(body):
                self._send(chunk, deadline)

            self.messages_sent += 1
            logger.debug(f"[{self.id}] Sent message with {total} byte body")

        finally:
            if deadline is not None:
                self._restore_timeout()
            self._finish(ConnectionState.REPLYING)

    def _send(self, data, deadline: Optional[float] = None) -> None:
        """sendall() with deadline, timeout and close translation."""
        self._bound_to_deadline(deadline, "reply")

        try:
            # sendall() loops until every byte is handed to the kernel
            self.socket.sendall(data)
        except socket.timeout as e:
            raise FramingTimeout(f"[{self.id}] Write timed out after {self.timeout}s") from e
        except OSError as e:
            if self.is_closed:
                raise ConnectionClosedError(f"[{self.id}] Connection closed during reply") from e
            raise
        self.last_activity = time.time()

    # =========================================================================
    # STATE HELPERS
    # =========================================================================

    def _ensure_not_closed(self) -> None:
        if self.is_closed:
            raise ConnectionClosedError(f"[{self.id}] Connection is closed")

    def _ensure_usable(self) -> None:
        self._ensure_not_closed()

        if self.state is ConnectionState.NEW:
            raise ConnectionStateError(f"[{self.id}] Connection is not connected")

        if self.state is not ConnectionState.OPEN:
            # One message per direction at a time, never interleaved
            raise ConnectionStateError(
                f"[{self.id}] Connection is busy ({self.state.value})"
            )

    def _finish(self, busy_state: ConnectionState) -> None:
        # close() may have run meanwhile; CLOSED always wins
        if self.state is busy_state:
            self.state = ConnectionState.OPEN

    def _deadline(self) -> Optional[float]:
        if self.timeout is NO_TIMEOUT:
            return None
        return time.monotonic() + self.timeout

    def _bound_to_deadline(self, deadline: Optional[float], operation: str) -> None:
        """Cap the next socket call at the time left before the deadline."""
        if deadline is None:
            return

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FramingTimeout(
                f"[{self.id}] {operation} exceeded the {self.timeout}s deadline"
            )

        try:
            self.socket.settimeout(remaining)
        except OSError as e:
            if self.is_closed:
                raise ConnectionClosedError(f"[{self.id}] Connection closed during {operation}") from e
            raise

    # =========================================================================
    # CLOSING: Properly terminate the connection
    # =========================================================================

    def close(self) -> None:
        """
        Close the connection.

        Idempotent. Safe to call from another thread: shutdown() wakes up a
        recv() or sendall() blocked on this socket, which then fails with
        ConnectionClosedError. This is the only way to cancel an in-flight
        receive()/reply().

        ┌─────────────────────────────────────────────────────────────────┐
        │                    Close Sequence                               │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   state = CLOSED          (first, so a woken reader sees it)    │
        │   shutdown(SHUT_RDWR)     (sends FIN, wakes blocked calls)      │
        │   close()                 (releases the file descriptor)        │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘
        """
        if self.state is ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Not connected, or the peer is already gone

        try:
            self.socket.close()
        except OSError:
            pass

        self._buffer = b""
        logger.debug(
            f"[{self.id}] Connection closed after {self.messages_received} received, "
            f"{self.messages_sent} sent"
        )

    # =========================================================================
    # CONTEXT MANAGER: For use with 'with' statement
    # =========================================================================

    def __enter__(self):
        """
        Allows using Connection with 'with' statement for automatic cleanup:

            with conn:
                message = conn.receive()
                conn.reply(message.body)
            # Connection closed here, on every exit path
        """
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure connection is closed."""
        self.close()
        return False  # Don't suppress exceptions
