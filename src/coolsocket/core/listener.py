"""
=============================================================================
LISTENER: THE ACCEPT LOOP
=============================================================================

The listener owns the server socket. It binds, listens, and runs the
accept loop on a background thread, handing every accepted socket to a
dispatch callback (the server's admission path).

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create the listening socket
    2. bind()      Reserve IP:PORT          (only if not already bound)
    3. listen()    OS starts queueing incoming connections (backlog)
    4. accept()    Loop on a background thread, one client socket per call
    5. close()     stop() releases the port

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Owned by Listener
                    └───────────┬───────────┘
                                │ accept()
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    dispatch(sock)          dispatch(sock)          dispatch(sock)
        │                       │                       │
     admitted               admitted                rejected
                                                    └── closed here

=============================================================================
STOPPING AN ACCEPT LOOP
=============================================================================

accept() blocks. Closing the socket from another thread does not reliably
wake it on every platform, so the loop uses the same trick for both:

    listening_socket.settimeout(accept_interval)

    while not stop_requested:
        try:
            accept()          # returns at least every accept_interval
        except timeout:
            continue          # look at the stop flag again

stop() sets the flag and closes the socket; the loop notices within one
interval and exits, running the on_stopped hook on its way out.

=============================================================================
"""

import socket
import logging
import threading
import time
from typing import Callable, Optional, Tuple

from ..config import ServerConfig


logger = logging.getLogger(__name__)

Dispatch = Callable[[socket.socket, Tuple[str, int]], bool]


class Listener:
    """
    Background accept loop over one listening socket.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      Listener Internals                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start()            bind if needed, spawn accept thread            │
    │        │                                                             │
    │        └──► _accept_loop()   (background thread)                    │
    │                 │                                                    │
    │                 ├──► on_started()                                    │
    │                 ├──► while not stopping:                             │
    │                 │        accept()                                    │
    │                 │        dispatch(sock, addr) or close(sock)         │
    │                 ├──► on_error(exc)      (unexpected accept failure)  │
    │                 └──► on_stopped()                                    │
    │                                                                      │
    │    stop()             set stop flag, close listening socket          │
    │                                                                      │
    │    start_delayed()    wait for a previous loop to exit, then start   │
    │    start_ensured()    start_delayed() and wait until loop is alive   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Args:
        config: Server configuration (host, port, backlog, accept_interval).
        dispatch: Called with (client_socket, address) for every accepted
                  socket. Returns True if it took ownership of the socket.
                  On False the listener closes the socket.
        on_started / on_stopped / on_error: Optional lifecycle hooks, run
                  on the accept thread.
    """

    def __init__(
        self,
        config: ServerConfig,
        dispatch: Dispatch,
        on_started: Optional[Callable[[], None]] = None,
        on_stopped: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.config = config
        self._dispatch = dispatch
        self._on_started = on_started
        self._on_stopped = on_stopped
        self._on_error = on_error

        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None

        # Serializes start() and stop() against each other
        self._lock = threading.Lock()

        self._stop_requested = threading.Event()

        # Set while the accept loop runs / while no loop runs
        self._alive = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_alive(self) -> bool:
        """True while the accept thread is running."""
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stopped.is_set()

    @property
    def is_bound(self) -> bool:
        return self._socket is not None

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port), or the configured one when not bound."""
        sock = self._socket
        if sock is not None:
            try:
                return sock.getsockname()[:2]
            except OSError:
                pass
        return (self.config.host, self.config.port)

    @property
    def local_port(self) -> int:
        return self.address[1]

    # =========================================================================
    # SOCKET SETUP
    # =========================================================================

    def _create_socket(self) -> socket.socket:
        """Create, bind and listen. Raises OSError on failure."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        try:
            # SO_REUSEADDR: rebind right after stop() despite TIME_WAIT
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

            # Bounded accept() so the loop can observe stop requests
            sock.settimeout(self.config.accept_interval)

            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
        except OSError:
            sock.close()
            raise

        return sock

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> bool:
        """
        Bind (if not already bound) and start the accept loop.

        Returns:
            True if a new accept loop was started. False if the loop is
            already running or the socket could not be bound. A bind
            failure is logged, never raised.
        """
        with self._lock:
            if self.is_alive:
                return False

            if self._socket is None:
                try:
                    self._socket = self._create_socket()
                except OSError as e:
                    logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
                    return False

            self._stop_requested.clear()
            self._alive.clear()
            self._stopped.clear()

            self._thread = threading.Thread(
                target=self._accept_loop,
                args=(self._socket,),
                name="coolsocket-listener",
                daemon=True,
            )
            self._thread.start()

        host, port = self.address
        logger.info(f"Listening on {host}:{port}")
        return True

    def stop(self) -> bool:
        """
        Ask the accept loop to exit and close the listening socket.

        Returns:
            True if a running loop was signaled. False if nothing was
            running or a stop was already requested.
        """
        with self._lock:
            if not self.is_alive or self._stop_requested.is_set():
                return False

            self._stop_requested.set()
            sock, self._socket = self._socket, None

        if sock is not None:
            try:
                # Wakes a blocked accept() right away on Linux
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            _close_quietly(sock, "listening socket")

        logger.info("Listener stop requested")
        return True

    def start_delayed(self, timeout: float) -> bool:
        """
        Start once any previous accept loop has fully exited.

        Returns:
            False if the previous loop is still running after `timeout`
            seconds (it was not asked to stop, or it is stuck), otherwise
            the result of start().
        """
        if not self._stopped.wait(timeout):
            return False
        return self.start()

    def start_ensured(self, timeout: float) -> bool:
        """
        Start and wait until the accept loop is actually running.

        Returns:
            True only if the loop is alive within `timeout` seconds.
        """
        deadline = time.monotonic() + timeout

        if not self.start_delayed(timeout):
            return False

        return self._alive.wait(max(0.0, deadline - time.monotonic()))

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until no accept loop is running. True if that happened."""
        return self._stopped.wait(timeout)

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def _accept_loop(self, sock: socket.socket):
        self._alive.set()
        self._run_hook(self._on_started)

        try:
            while not self._stop_requested.is_set():
                try:
                    client_socket, client_address = sock.accept()
                except socket.timeout:
                    # Normal: time to look at the stop flag again
                    continue
                except OSError as e:
                    if self._stop_requested.is_set():
                        break  # stop() closed the socket under us
                    logger.error(f"Accept error: {e}")
                    self._run_hook(self._on_error, e)
                    break

                if self._stop_requested.is_set():
                    _close_quietly(client_socket, "late client socket")
                    break

                self._handle_accepted(client_socket, client_address)

        finally:
            with self._lock:
                if self._socket is sock:
                    self._socket = None
            _close_quietly(sock, "listening socket")

            self._alive.clear()
            self._run_hook(self._on_stopped)
            logger.info("Listener stopped")
            self._stopped.set()

    def _handle_accepted(self, client_socket: socket.socket, client_address: Tuple[str, int]):
        logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

        try:
            # Small framed messages should leave immediately (no Nagle delay)
            client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError:
            pass

        try:
            admitted = self._dispatch(client_socket, client_address)
        except Exception:
            logger.exception(f"Dispatch failed for {client_address[0]}:{client_address[1]}")
            admitted = False

        if not admitted:
            logger.warning(
                f"Rejected connection from {client_address[0]}:{client_address[1]}"
            )
            _close_quietly(client_socket, "rejected client socket")

    def _run_hook(self, hook, *args):
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:
            logger.exception(f"Lifecycle hook {getattr(hook, '__name__', hook)!r} failed")


def _close_quietly(sock: socket.socket, what: str) -> None:
    """Close a socket; report (do not raise) I/O errors."""
    try:
        sock.close()
    except OSError as e:
        logger.warning(f"Error closing {what}: {e}")
