"""
=============================================================================
COOLSOCKET SERVER
=============================================================================

The orchestrator that ties the core components together.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    SERVER ARCHITECTURE                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                     ┌────────────────────┐                          │
    │                     │  CoolSocketServer  │                          │
    │                     └─────────┬──────────┘                          │
    │            ┌──────────────────┼──────────────────┐                  │
    │            ▼                  ▼                  ▼                  │
    │     ┌────────────┐   ┌─────────────────┐   ┌────────────┐           │
    │     │  Listener  │──►│    Admission    │──►│ ThreadPool │           │
    │     │  (accept)  │   │ (limit/registry)│   │ (workers)  │           │
    │     └────────────┘   └─────────────────┘   └─────┬──────┘           │
    │                                                  ▼                  │
    │                                       handler.handle(connection)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THE HANDLER
=============================================================================

The application supplies one capability: something that handles a
connection. Either an object with a handle() method or a plain function.

    def echo(conn):
        with conn:
            message = conn.receive()
            conn.reply(message.body)

    server = CoolSocketServer(echo, ServerConfig(port=5000))

The handler runs on a worker thread, exactly once per connection, and is
expected to close the connection. If it forgets, the server closes it
afterwards and logs a warning. If it raises, the error is logged and
stays with that connection; it never reaches on_internal_error and never
affects other connections.

=============================================================================
LIFECYCLE HOOKS
=============================================================================

    on_server_started()       accept loop is running
    on_server_stopped()       accept loop has exited
    on_internal_error(exc)    accept() failed unexpectedly

Override them in a subclass or pass callables to the constructor. Both are
optional. Hooks run on the listener thread.

=============================================================================
"""

import logging
import signal
import threading
from typing import Callable, Optional, Protocol, Union, runtime_checkable

from .config import ServerConfig
from .core import AdmissionController, Connection, LeakTracker, Listener, ThreadPool


logger = logging.getLogger(__name__)


@runtime_checkable
class ConnectionHandler(Protocol):
    """Anything with handle(connection)."""

    def handle(self, connection: Connection) -> None:
        ...


Handler = Union[ConnectionHandler, Callable[[Connection], None]]


def _resolve_handler(handler: Handler) -> Callable[[Connection], None]:
    if isinstance(handler, ConnectionHandler):
        return handler.handle
    if callable(handler):
        return handler
    raise TypeError(f"handler must be callable or have handle(), got {type(handler).__name__}")


class CoolSocketServer:
    """
    Socket server that hands each admitted connection to a handler.

    =========================================================================
    USAGE
    =========================================================================

        server = CoolSocketServer(EchoHandler(), ServerConfig(max_connections=4))
        server.start()                 # returns immediately
        print(server.local_port)
        ...
        server.shutdown()

        # or
        with CoolSocketServer(handler, config) as server:
            ...

    =========================================================================
    """

    def __init__(
        self,
        handler: Handler,
        config: Optional[ServerConfig] = None,
        on_started: Optional[Callable[[], None]] = None,
        on_stopped: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self._handle = _resolve_handler(handler)

        self._started_callback = on_started
        self._stopped_callback = on_stopped
        self._error_callback = on_error

        # ─────────────────────────────────────────────────────────────────
        # CORE COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        # External executor wins; otherwise a pool sized to the limit
        self._owns_pool = self.config.executor is None
        self._pool = self.config.executor or ThreadPool(
            workers=self.config.pool_size,
            grow=self.config.pool_grows,
        )

        self._admission = AdmissionController(
            executor=self._pool,
            process=self._process_connection,
            max_connections=self.config.max_connections,
            timeout=self.config.timeout,
            max_header_size=self.config.max_header_size,
        )

        self._listener = Listener(
            self.config,
            dispatch=self._dispatch,
            on_started=self.on_server_started,
            on_stopped=self.on_server_stopped,
            on_error=self.on_internal_error,
        )

        self._tracker: Optional[LeakTracker] = None
        if self.config.leak_threshold:
            self._tracker = LeakTracker(self._admission.connections, self.config.leak_threshold)

        self._original_handlers: dict = {}

    # =========================================================================
    # LIFECYCLE HOOKS (override or pass callables)
    # =========================================================================

    def on_server_started(self) -> None:
        if self._started_callback:
            self._started_callback()

    def on_server_stopped(self) -> None:
        if self._stopped_callback:
            self._stopped_callback()

    def on_internal_error(self, exception: Exception) -> None:
        if self._error_callback:
            self._error_callback(exception)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_alive(self) -> bool:
        return self._listener.is_alive

    @property
    def address(self):
        return self._listener.address

    @property
    def local_port(self) -> int:
        return self._listener.local_port

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    @property
    def connections(self) -> list:
        """Snapshot of active connections."""
        return self._admission.connections()

    @property
    def connection_count(self) -> int:
        return self._admission.count()

    def count_by_address(self, host: str) -> int:
        """Active connections from one remote host."""
        return self._admission.count_by_address(host)

    @property
    def stats(self) -> dict:
        stats = {"connections": self._admission.stats}
        if isinstance(self._pool, ThreadPool):
            stats["pool"] = self._pool.stats
        return stats

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def _prepare(self) -> None:
        if self._owns_pool:
            self._pool.start()
        if self._tracker:
            self._tracker.start()

    def start(self) -> bool:
        """
        Start accepting connections in the background.

        Returns:
            False if already running or the port could not be bound.
        """
        self._prepare()
        return self._listener.start()

    def start_delayed(self, timeout: float) -> bool:
        """Start after any previous accept loop has fully stopped."""
        self._prepare()
        return self._listener.start_delayed(timeout)

    def start_ensured(self, timeout: float) -> bool:
        """Start and wait (up to timeout) until the accept loop is alive."""
        self._prepare()
        return self._listener.start_ensured(timeout)

    def stop(self) -> bool:
        """
        Stop accepting new connections.

        Connections already being handled keep running; use shutdown()
        to also close them and stop the worker pool.

        Returns:
            False if the server was not running.
        """
        return self._listener.stop()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = 5.0) -> None:
        """
        Full shutdown.

        =====================================================================
        SHUTDOWN PROCESS
        =====================================================================

        1. Stop accepting new connections
        2. Wait for the accept loop to exit
        3. Close every active connection (aborts blocked receive/reply)
        4. Shut down the worker pool (if the server created it)

        =====================================================================
        """
        logger.info("Shutting down server...")

        self._listener.stop()
        self._listener.wait_stopped(timeout)

        active = self._admission.count()
        if active:
            logger.info(f"Closing {active} active connection(s)")
        self._admission.for_each(lambda conn: conn.close())

        if self._owns_pool:
            self._pool.shutdown(wait=wait, timeout=timeout)

        if self._tracker:
            self._tracker.stop()

        logger.info("Server stopped")

    def serve_forever(self) -> None:
        """
        Run in the foreground until stopped (Ctrl+C, SIGTERM or stop()).

        Signal handlers are only installed when called from the main
        thread; the originals are restored on exit.
        """
        if not self.start():
            raise RuntimeError(f"Failed to start server on {self.config.host}:{self.config.port}")

        in_main_thread = threading.current_thread() is threading.main_thread()
        if in_main_thread:
            self._setup_signals()

        try:
            while not self._listener.wait_stopped(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            if in_main_thread:
                self._restore_signals()
            self.shutdown()

    def _setup_signals(self):
        """SIGTERM/SIGINT trigger a graceful stop instead of killing us."""
        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.stop()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _dispatch(self, raw_socket, address) -> bool:
        """Listener callback: admit the socket or report it rejected."""
        return self._admission.try_admit(raw_socket, address)

    def _process_connection(self, conn: Connection) -> None:
        """
        Worker task for one admitted connection.

        =====================================================================
        TASK SEQUENCE
        =====================================================================

        1. Apply the connection timeout to the socket (if configured)
        2. Run the handler exactly once
        3. Safety-net close if the handler left the connection open
        4. Release the connection from admission (always)

        =====================================================================
        """
        try:
            try:
                conn.apply_timeout()
            except OSError as e:
                logger.warning(f"[{conn.id}] Could not set socket timeout: {e}")

            try:
                self._handle(conn)
            except Exception as e:
                # Isolation boundary: logged here, never escalated
                logger.exception(f"[{conn.id}] Handler failed: {type(e).__name__}: {e}")

            if not conn.is_closed:
                logger.warning(
                    f"[{conn.id}] Handler returned without closing the connection; "
                    f"closing it. Close connections at the end of the handler."
                )
                conn.close()

        finally:
            self._admission.release(conn)

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        if not self.start():
            raise RuntimeError(f"Failed to start server on {self.config.host}:{self.config.port}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
