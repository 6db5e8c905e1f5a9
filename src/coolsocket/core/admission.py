"""
=============================================================================
ADMISSION CONTROL
=============================================================================

The admission controller decides whether a freshly accepted socket gets a
worker, and keeps the registry of connections currently being handled.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      Admission Flow                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Listener.accept()                                                  │
    │        │                                                             │
    │        ▼                                                             │
    │   try_admit(sock, addr)        ┌──── with lock ────────────┐         │
    │        │                       │ count < max or max == 0 ? │         │
    │        │                       │   wrap in Connection      │         │
    │        │                       │   add to active set       │         │
    │        │                       └───────────────────────────┘         │
    │        ├── True  ──► task submitted to the worker pool              │
    │        └── False ──► caller owns the socket (listener closes it)    │
    │                                                                      │
    │   task finished ──► release(conn)   (exactly once, in finally)       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

One lock guards the active set. Every mutation and every read of its size
or members goes through it, and it is never held while calling out to
user code or doing socket I/O.

=============================================================================
"""

import logging
import threading
from typing import Any, Callable, List, Optional

from ..config import NO_TIMEOUT
from ..protocol import DEFAULT_MAX_HEADER_SIZE
from .connection import Connection, ConnectionState


logger = logging.getLogger(__name__)


class AdmissionController:
    """
    Thread-safe registry of active connections with a concurrency limit.

    Args:
        executor: Pool that runs connection tasks. Anything with
                  submit(fn, *args) works.
        process: Task body, called on a worker as process(connection).
                 It must call release(connection) when done.
        max_connections: Limit on registered connections. 0 = unlimited.
        timeout: Timeout given to every Connection created here.
        max_header_size: Header limit given to every Connection.
    """

    def __init__(
        self,
        executor: Any,
        process: Callable[[Connection], None],
        max_connections: int = 10,
        timeout: Optional[float] = NO_TIMEOUT,
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
    ):
        self.executor = executor
        self.process = process
        self.max_connections = max_connections
        self.timeout = timeout
        self.max_header_size = max_header_size

        self._active: set = set()
        self._lock = threading.Lock()

        # Metrics
        self.admitted_total = 0
        self.rejected_total = 0

    def try_admit(self, raw_socket, address: tuple) -> bool:
        """
        Admit a socket if there is capacity.

        Args:
            raw_socket: A socket returned by accept().
            address: The peer's (host, port).

        Returns:
            True if the socket was wrapped, registered and handed to the
            pool. False if the server is at capacity or the pool refused
            the task. On False the socket is left untouched; closing it is
            the caller's job.
        """
        with self._lock:
            if self.max_connections and len(self._active) >= self.max_connections:
                self.rejected_total += 1
                return False

            conn = Connection(
                socket=raw_socket,
                address=address,
                timeout=self.timeout,
                max_header_size=self.max_header_size,
                state=ConnectionState.OPEN,
            )
            self._active.add(conn)
            self.admitted_total += 1

        # Submitting outside the lock: an external executor may block.
        try:
            submitted = self.executor.submit(self.process, conn)
        except RuntimeError as e:
            # Pool is shutting down
            logger.warning(f"[{conn.id}] Worker pool refused connection: {e}")
            submitted = False

        if submitted is False:
            # Roll back so the registry only ever holds connections with a task
            self._discard(conn)
            return False

        logger.debug(f"[{conn.id}] Admitted {address[0]}:{address[1]} ({self.count()} active)")
        return True

    def release(self, connection: Connection) -> None:
        """Remove a connection from the active set (no-op if not present)."""
        self._discard(connection)
        logger.debug(f"[{connection.id}] Released ({self.count()} active)")

    def _discard(self, connection: Connection) -> None:
        with self._lock:
            self._active.discard(connection)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    def count(self) -> int:
        """Number of registered connections."""
        with self._lock:
            return len(self._active)

    def connections(self) -> List[Connection]:
        """Snapshot of registered connections, oldest first."""
        with self._lock:
            snapshot = list(self._active)
        return sorted(snapshot, key=lambda c: c.created_at)

    def for_each(self, fn: Callable[[Connection], None]) -> None:
        """
        Call fn for every registered connection.

        Runs over a snapshot, so fn may block, close connections, or
        trigger release() without deadlocking.
        """
        for conn in self.connections():
            fn(conn)

    def count_by_address(self, host: str) -> int:
        """Number of registered connections from a remote host."""
        with self._lock:
            return sum(1 for c in self._active if c.remote_host == host)

    def is_active(self, connection: Connection) -> bool:
        with self._lock:
            return connection in self._active

    @property
    def at_capacity(self) -> bool:
        with self._lock:
            return bool(self.max_connections) and len(self._active) >= self.max_connections

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "active": len(self._active),
                "max": self.max_connections,
                "admitted": self.admitted_total,
                "rejected": self.rejected_total,
            }
