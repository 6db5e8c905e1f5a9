"""
=============================================================================
CLIENT CONNECTOR
=============================================================================

The outbound side. A client creates a Connection, connects it, and then
drives receive()/reply() exactly like a server-side handler does.

    conn = Client(timeout=5.0).connect(("127.0.0.1", 5000))
    with conn:
        conn.reply(b"ping")
        print(conn.receive().body)

=============================================================================
HANDLER-STYLE HELPERS
=============================================================================

connect(handler) runs handler(client) in the calling thread and returns
whatever the handler stored with client.set_return():

    def fetch(client):
        with client.connect(address) as conn:
            conn.reply("status")
            client.set_return(conn.receive().text)

    status = connect(fetch, str)

connect_async(handler) runs the same thing on a background thread and
returns the Thread. The value stored with set_return() is NOT delivered
anywhere; if the caller needs a result from an asynchronous handler, the
handler must hand it over itself (a queue, a future, a callback).

=============================================================================
"""

import logging
import threading
from typing import Any, Callable, Optional

from .config import NO_TIMEOUT
from .core.connection import Connection
from .protocol import DEFAULT_MAX_HEADER_SIZE


logger = logging.getLogger(__name__)

_DEFAULT = object()


class Client:
    """
    Factory for outbound connections, plus a slot for a handler's result.

    Args:
        timeout: Default timeout for connections created by this client.
        max_header_size: Header limit for received messages.
    """

    def __init__(
        self,
        timeout: Optional[float] = NO_TIMEOUT,
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
    ):
        self.timeout = timeout
        self.max_header_size = max_header_size
        self._return: Any = None

    def connect(self, address: tuple, timeout: Any = _DEFAULT) -> Connection:
        """
        Open a connection to `address`.

        The timeout bounds the connect itself and then every
        receive()/reply() on the returned connection.

        Args:
            address: (host, port).
            timeout: Overrides the client default. NO_TIMEOUT (or 0) disables it.

        Returns:
            An OPEN Connection. The caller must close it.

        Raises:
            FramingTimeout: The connect did not finish in time.
            OSError: The connect failed.
        """
        if timeout is _DEFAULT:
            timeout = self.timeout

        conn = Connection.create(timeout=timeout, max_header_size=self.max_header_size)
        return conn.connect(address)

    def set_return(self, value: Any) -> None:
        """Store a value for connect() to hand back to its caller."""
        self._return = value

    def get_return(self) -> Any:
        return self._return

    @property
    def return_value(self) -> Any:
        return self._return


ClientHandler = Callable[[Client], None]


def connect(
    handler: ClientHandler,
    expected_type: Optional[type] = None,
    timeout: Optional[float] = NO_TIMEOUT,
) -> Any:
    """
    Run a client handler synchronously and return its stored value.

    Args:
        handler: Called once with a fresh Client.
        expected_type: If given, a stored value that is not an instance
                       of it is dropped (logged) and None is returned.
        timeout: Default timeout for the Client.

    Returns:
        The value stored with client.set_return(), or None.

    Raises:
        Whatever the handler raises.
    """
    client = Client(timeout=timeout)
    handler(client)

    value = client.get_return()
    if value is not None and expected_type is not None and not isinstance(value, expected_type):
        logger.warning(
            f"Client handler stored {type(value).__name__}, expected {expected_type.__name__}; "
            f"returning None"
        )
        return None
    return value


def connect_async(handler: ClientHandler, timeout: Optional[float] = NO_TIMEOUT) -> threading.Thread:
    """
    Run a client handler on a background daemon thread.

    Fire-and-forget: the returned Thread can be joined, but the value the
    handler stores is discarded. Exceptions are logged, not re-raised.
    """
    def run():
        try:
            connect(handler, timeout=timeout)
        except Exception as e:
            logger.exception(f"Async client handler failed: {type(e).__name__}: {e}")

    thread = threading.Thread(target=run, name="coolsocket-client", daemon=True)
    thread.start()
    return thread
