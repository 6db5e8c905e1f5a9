"""
pytest configuration and fixtures.
"""

import socket
import time
from typing import Callable, Generator, List
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from coolsocket import Client, CoolSocketServer, ServerConfig, NO_TIMEOUT
from coolsocket.core import Connection, ConnectionState


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        max_connections=4,
        timeout=5.0,
        accept_interval=0.05,
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def wait_until() -> Callable:
    """Poll a predicate until it is true or the timeout elapses."""
    def wait(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()
    return wait


# =============================================================================
# CONNECTION PAIRS
# =============================================================================

@pytest.fixture
def connection_pair() -> Generator[Callable, None, None]:
    """
    Factory for (Connection, raw peer socket) over a socketpair.

    The Connection starts OPEN, like an accepted one. Everything created
    is closed at teardown.
    """
    created: List = []

    def make(timeout=NO_TIMEOUT, **kwargs):
        ours, peer = socket.socketpair()
        conn = Connection(socket=ours, timeout=timeout, state=ConnectionState.OPEN, **kwargs)
        conn.apply_timeout()
        peer.settimeout(5.0)
        created.append((conn, peer))
        return conn, peer

    yield make

    for conn, peer in created:
        conn.close()
        peer.close()


@pytest.fixture
def connected_pair(connection_pair) -> Generator[Callable, None, None]:
    """Factory for two Connections talking to each other."""
    extra: List[Connection] = []

    def make(timeout=NO_TIMEOUT):
        conn, peer = connection_pair(timeout=timeout)
        other = Connection(socket=peer, timeout=timeout, state=ConnectionState.OPEN)
        other.apply_timeout()
        extra.append(other)
        return conn, other

    yield make

    for conn in extra:
        conn.close()


# =============================================================================
# RUNNING SERVERS
# =============================================================================

@pytest.fixture
def start_server(config) -> Generator[Callable, None, None]:
    """
    Factory that starts a server and shuts it down at teardown.

    Usage:
        server = start_server(handler, max_connections=1)
    """
    servers: List[CoolSocketServer] = []

    def start(handler, **overrides) -> CoolSocketServer:
        for name, value in overrides.items():
            setattr(config, name, value)

        server = CoolSocketServer(handler, config)
        servers.append(server)

        if not server.start_ensured(5.0):
            raise RuntimeError("Server failed to start")
        return server

    yield start

    for server in servers:
        server.shutdown(timeout=2.0)


@pytest.fixture
def client() -> Client:
    """Client with a timeout so a broken test fails instead of hanging."""
    return Client(timeout=5.0)
