"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for a coolsocket server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m coolsocket serve --port 3000                     │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── COOLSOCKET_PORT=3000 python -m coolsocket serve            │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TIMEOUTS
=============================================================================

Timeouts are seconds as float, like everything in the socket module.
NO_TIMEOUT (None) means "block as long as it takes".

The same value is used twice for every connection:

    socket.settimeout(timeout)     a single recv()/send() may not stall longer
    deadline = now + timeout       a whole receive()/reply() may not take longer

The socket timeout is the one that actually interrupts a stalled call. The
deadline is only checked between calls, so it bounds the total time of a
message that trickles in, but it cannot preempt a call that is blocked.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Any, Optional

from .protocol.codec import DEFAULT_MAX_HEADER_SIZE


NO_TIMEOUT = None

# Pool size used when max_connections is 0 (unlimited) and workers is unset
DEFAULT_WORKERS = 10

LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration for a coolsocket server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, timeout, accept_interval

    CONCURRENCY SETTINGS
    - max_connections, workers, executor

    PROTOCOL SETTINGS
    - max_header_size

    DIAGNOSTICS
    - leak_threshold, log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only (development)
    - "0.0.0.0" - All network interfaces
    """

    port: int = 0
    """
    The port number to listen on. 0 lets the OS pick a free port;
    read it back with server.local_port.
    """

    backlog: int = 128
    """
    Maximum number of connections the OS queues before accept().
    This is the only queue in front of admission.
    """

    timeout: Optional[float] = NO_TIMEOUT
    """
    Per-connection timeout in seconds, applied to every accepted socket
    and to every receive()/reply() call. NO_TIMEOUT (None) = block forever.
    """

    accept_interval: float = 0.5
    """
    How often the accept loop wakes up to check for a stop request.
    """

    # ─────────────────────────────────────────────────────────────────────
    # CONCURRENCY SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_connections: int = 10
    """
    Maximum number of connections handled at once. Connections beyond
    this are rejected, not queued. 0 = unlimited.
    """

    workers: Optional[int] = None
    """
    Worker thread count. Defaults to max_connections. With max_connections
    at 0 and no explicit count, the pool starts at DEFAULT_WORKERS and grows
    by one thread for every connection that would otherwise wait.
    """

    executor: Optional[Any] = None
    """
    External pool to run connection tasks on instead of the built-in
    ThreadPool. Anything with submit(fn, *args) works, for example
    concurrent.futures.ThreadPoolExecutor. The server does not shut it down.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_header_size: int = DEFAULT_MAX_HEADER_SIZE
    """
    Largest header accepted before the separator must appear.
    Protects against a peer that never sends one.
    """

    # ─────────────────────────────────────────────────────────────────────
    # DIAGNOSTICS
    # ─────────────────────────────────────────────────────────────────────

    leak_threshold: Optional[float] = None
    """
    If set, log a warning for every connection registered longer than
    this many seconds. Debugging aid for handlers that never return.
    """

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    log_format: str = "text"
    """
    Log format: 'json' or 'text'.
    """

    @property
    def pool_size(self) -> int:
        """Number of worker threads the built-in pool should run."""
        if self.workers:
            return self.workers
        return self.max_connections or DEFAULT_WORKERS

    @property
    def pool_grows(self) -> bool:
        """True if every admitted connection needs its own thread (no limit, no fixed count)."""
        return self.max_connections == 0 and not self.workers

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        COOLSOCKET_HOST             Bind host (default: 127.0.0.1)
        COOLSOCKET_PORT             Bind port (default: 0)
        COOLSOCKET_TIMEOUT          Seconds; empty, 0 or negative = no timeout
        COOLSOCKET_MAX_CONNECTIONS  Concurrent connections (default: 10)
        COOLSOCKET_WORKERS          Worker threads (default: derived)
        COOLSOCKET_LOG_LEVEL        Logging level (default: INFO)
        COOLSOCKET_LOG_FORMAT       text or json (default: text)

        =====================================================================
        """
        timeout = _parse_timeout(os.getenv("COOLSOCKET_TIMEOUT", ""))
        workers = os.getenv("COOLSOCKET_WORKERS")

        return cls(
            host=os.getenv("COOLSOCKET_HOST", "127.0.0.1"),
            port=int(os.getenv("COOLSOCKET_PORT", "0")),
            timeout=timeout,
            max_connections=int(os.getenv("COOLSOCKET_MAX_CONNECTIONS", "10")),
            workers=int(workers) if workers else None,
            log_level=os.getenv("COOLSOCKET_LOG_LEVEL", "INFO"),
            log_format=os.getenv("COOLSOCKET_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by the server at construction so a bad value fails at
        startup rather than on the first connection.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0 (use NO_TIMEOUT to disable)")

        if self.accept_interval <= 0:
            raise ValueError("accept_interval must be > 0")

        if self.max_connections < 0:
            raise ValueError("max_connections must be >= 0 (0 = unlimited)")

        if self.workers is not None and self.workers < 1:
            raise ValueError("workers must be >= 1")

        if self.executor is not None and not callable(getattr(self.executor, "submit", None)):
            raise ValueError("executor must provide a submit() method")

        if self.max_header_size < 16:
            raise ValueError("max_header_size must be >= 16")

        if self.leak_threshold is not None and self.leak_threshold <= 0:
            raise ValueError("leak_threshold must be > 0")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")


def _parse_timeout(value: str) -> Optional[float]:
    """Environment timeout: empty, 0 or negative means NO_TIMEOUT."""
    if not value.strip():
        return NO_TIMEOUT
    seconds = float(value)
    return seconds if seconds > 0 else NO_TIMEOUT
