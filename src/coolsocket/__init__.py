"""
=============================================================================
COOLSOCKET
=============================================================================

A small framed-message socket library: a threaded TCP server that hands
each admitted connection to your handler, and a client connector, both
speaking the same wire format.

    {"length": 5}\\nHEADER_END\\nHELLO

=============================================================================
QUICK START
=============================================================================

    from coolsocket import CoolSocketServer, ServerConfig, Client

    def echo(conn):
        with conn:
            message = conn.receive()
            conn.reply(message.body)

    with CoolSocketServer(echo, ServerConfig(max_connections=4)) as server:
        with Client(timeout=5.0).connect(("127.0.0.1", server.local_port)) as conn:
            conn.reply(b"hello")
            print(conn.receive().body)          # b"hello"

=============================================================================
"""

__version__ = "1.0.0"

from .config import NO_TIMEOUT, ServerConfig
from .errors import (
    CoolSocketError,
    FramingError,
    FramingTimeout,
    MalformedHeader,
    IncompleteMessage,
    ConnectionStateError,
    ConnectionClosedError,
)
from .protocol import Message
from .core import Connection, ConnectionState
from .server import CoolSocketServer, ConnectionHandler
from .client import Client, connect, connect_async

__all__ = [
    "CoolSocketServer",
    "ConnectionHandler",
    "ServerConfig",
    "NO_TIMEOUT",
    "Connection",
    "ConnectionState",
    "Message",
    "Client",
    "connect",
    "connect_async",
    "CoolSocketError",
    "FramingError",
    "FramingTimeout",
    "MalformedHeader",
    "IncompleteMessage",
    "ConnectionStateError",
    "ConnectionClosedError",
    "__version__",
]
