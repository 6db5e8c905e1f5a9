"""
Unit tests for the accept loop.
"""

import socket
import threading

import pytest

from coolsocket.config import ServerConfig
from coolsocket.core import Listener


class BrokenListeningSocket:
    """Listening socket whose accept() fails with an unexpected error."""

    def __init__(self):
        self.closed = False

    def accept(self):
        raise OSError("accept exploded")

    def getsockname(self):
        return ("127.0.0.1", 9)

    def shutdown(self, how):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def listener_config() -> ServerConfig:
    return ServerConfig(host="127.0.0.1", port=0, accept_interval=0.05)


@pytest.fixture
def make_listener(listener_config):
    listeners = []

    def make(dispatch=lambda sock, addr: False, **hooks):
        listener = Listener(listener_config, dispatch, **hooks)
        listeners.append(listener)
        return listener

    yield make

    for listener in listeners:
        listener.stop()
        listener.wait_stopped(2.0)


class TestListener:
    """Tests for Listener start/stop and dispatch."""

    def test_start_and_stop(self, make_listener):
        """Test the basic lifecycle and its return values."""
        listener = make_listener()

        assert listener.start_ensured(2.0) is True
        assert listener.is_alive
        assert listener.local_port != 0
        assert listener.start() is False

        assert listener.stop() is True
        assert listener.stop() is False
        assert listener.wait_stopped(2.0)
        assert not listener.is_alive
        assert not listener.is_bound

    def test_stop_when_never_started(self, make_listener):
        """Test that stop() on an idle listener is a no-op."""
        assert make_listener().stop() is False

    def test_dispatch_receives_sockets(self, make_listener):
        """Test that accepted sockets are handed to dispatch."""
        accepted = []
        seen = threading.Event()

        def dispatch(sock, address):
            accepted.append(address)
            sock.close()
            seen.set()
            return True

        listener = make_listener(dispatch)
        listener.start_ensured(2.0)

        with socket.create_connection(("127.0.0.1", listener.local_port), timeout=2.0):
            assert seen.wait(2.0)

        assert accepted[0][0] == "127.0.0.1"

    def test_rejected_socket_is_closed(self, make_listener):
        """Test that the listener closes sockets dispatch did not take."""
        listener = make_listener(lambda sock, addr: False)
        listener.start_ensured(2.0)

        with socket.create_connection(("127.0.0.1", listener.local_port), timeout=2.0) as client:
            assert client.recv(16) == b""

    def test_dispatch_exception_is_rejection(self, make_listener):
        """Test that a failing dispatch does not kill the accept loop."""
        def dispatch(sock, addr):
            raise RuntimeError("dispatch bug")

        listener = make_listener(dispatch)
        listener.start_ensured(2.0)

        for _ in range(2):
            with socket.create_connection(("127.0.0.1", listener.local_port), timeout=2.0) as client:
                assert client.recv(16) == b""

        assert listener.is_alive

    def test_hooks(self, make_listener):
        """Test that on_started and on_stopped fire once per loop."""
        events = []
        listener = make_listener(
            on_started=lambda: events.append("started"),
            on_stopped=lambda: events.append("stopped"),
        )

        listener.start_ensured(2.0)
        listener.stop()
        listener.wait_stopped(2.0)

        assert events == ["started", "stopped"]

    def test_accept_failure_calls_on_error(self, make_listener):
        """Test that an unexpected accept() error ends the loop via on_error."""
        errors = []
        listener = make_listener(on_error=errors.append)
        broken = BrokenListeningSocket()
        listener._socket = broken

        assert listener.start() is True
        assert listener.wait_stopped(2.0)

        assert len(errors) == 1
        assert "accept exploded" in str(errors[0])
        assert broken.closed
        assert not listener.is_alive

    def test_bind_failure(self, make_listener, listener_config):
        """Test that an occupied port makes start() return False."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
            occupied.bind(("127.0.0.1", 0))
            occupied.listen(1)
            listener_config.port = occupied.getsockname()[1]

            listener = make_listener()

            assert listener.start() is False
            assert not listener.is_alive

    def test_restart_after_stop(self, make_listener):
        """Test start_delayed() after a stop."""
        listener = make_listener()
        listener.start_ensured(2.0)
        listener.stop()

        assert listener.start_delayed(2.0) is True
        assert listener.is_alive

    def test_start_delayed_times_out_while_running(self, make_listener):
        """Test that start_delayed() gives up if the old loop keeps running."""
        listener = make_listener()
        listener.start_ensured(2.0)

        assert listener.start_delayed(0.1) is False
        assert listener.is_alive
