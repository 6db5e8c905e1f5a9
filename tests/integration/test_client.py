"""
Integration tests for the client connector and the CLI.
"""

import logging
import queue
import socket

import pytest

from coolsocket import Client, ConnectionState, connect, connect_async
from coolsocket.__main__ import build_config, build_parser, main
from coolsocket.handlers import EchoHandler


@pytest.fixture
def echo_server(start_server):
    return start_server(EchoHandler())


def server_address(server):
    return ("127.0.0.1", server.local_port)


class TestClient:
    """Tests for Client.connect()."""

    def test_connect_opens_connection(self, echo_server):
        """Test that a client connection is OPEN with a peer address."""
        with Client(timeout=5.0).connect(server_address(echo_server)) as conn:
            assert conn.state is ConnectionState.OPEN
            assert conn.remote_port == echo_server.local_port
            assert conn.timeout == 5.0

    def test_per_call_timeout(self, echo_server):
        """Test overriding the client's default timeout."""
        with Client(timeout=5.0).connect(server_address(echo_server), timeout=1.0) as conn:
            assert conn.timeout == 1.0

    def test_zero_timeout_means_no_timeout(self, echo_server):
        """Test that timeout=0 gives a blocking connection, not a non-blocking one."""
        with Client(timeout=0).connect(server_address(echo_server)) as conn:
            assert conn.timeout is None
            assert conn.socket.gettimeout() is None

            conn.reply(b"zero")
            assert conn.receive().body == b"zero"

    def test_connection_is_ipv4(self, echo_server):
        """Test that client connections use an IPv4 socket."""
        with Client(timeout=5.0).connect(server_address(echo_server)) as conn:
            assert conn.socket.family == socket.AF_INET
            assert conn.socket.getsockname()[0] == "127.0.0.1"

    def test_connect_refused(self, free_port):
        """Test that connect failures propagate as OSError."""
        with pytest.raises(OSError):
            Client(timeout=2.0).connect(("127.0.0.1", free_port))

    def test_return_slot(self):
        """Test set_return/get_return."""
        client = Client()
        assert client.get_return() is None

        client.set_return({"ok": True})

        assert client.get_return() == {"ok": True}
        assert client.return_value == {"ok": True}


class TestConnectHelpers:
    """Tests for connect() and connect_async()."""

    def test_connect_returns_stored_value(self, echo_server):
        """Test the synchronous handler style."""
        def fetch(client):
            with client.connect(server_address(echo_server)) as conn:
                conn.reply("status")
                client.set_return(conn.receive().text)

        assert connect(fetch, str, timeout=5.0) == "status"

    def test_connect_without_value(self):
        """Test a handler that stores nothing."""
        assert connect(lambda client: None) is None

    def test_connect_wrong_type(self, caplog):
        """Test that a value of the wrong type is dropped."""
        def handler(client):
            client.set_return(42)

        with caplog.at_level(logging.WARNING, logger="coolsocket.client"):
            assert connect(handler, str) is None

        assert "expected str" in caplog.text

    def test_connect_propagates_errors(self, free_port):
        """Test that handler exceptions reach the caller."""
        def handler(client):
            client.connect(("127.0.0.1", free_port))

        with pytest.raises(OSError):
            connect(handler, timeout=2.0)

    def test_connect_async(self, echo_server):
        """Test the fire-and-forget style, with the handler reporting back."""
        results = queue.Queue()

        def handler(client):
            with client.connect(server_address(echo_server)) as conn:
                conn.reply(b"async")
                results.put(conn.receive().body)

        thread = connect_async(handler, timeout=5.0)
        thread.join(5.0)

        assert not thread.is_alive()
        assert thread.daemon
        assert results.get(timeout=1.0) == b"async"

    def test_connect_async_logs_errors(self, caplog):
        """Test that async handler errors are logged, not raised."""
        def handler(client):
            raise RuntimeError("async failure")

        with caplog.at_level(logging.ERROR, logger="coolsocket.client"):
            thread = connect_async(handler)
            thread.join(5.0)

        assert "async failure" in caplog.text


class TestCLI:
    """Tests for `python -m coolsocket`."""

    def test_send(self, echo_server, capsys):
        """Test sending a message and printing the reply."""
        code = main(["send", "--port", str(echo_server.local_port), "hello cli"])

        assert code == 0
        assert capsys.readouterr().out.strip() == "hello cli"

    def test_send_refused(self, free_port, capsys):
        """Test the error path when nothing is listening."""
        code = main(["send", "--port", str(free_port), "--timeout", "2", "x"])

        assert code == 1
        assert "Error" in capsys.readouterr().err

    def test_serve_flags_override_environment(self, monkeypatch):
        """Test that an explicit --timeout 0 beats COOLSOCKET_TIMEOUT."""
        monkeypatch.setenv("COOLSOCKET_TIMEOUT", "30")
        monkeypatch.setenv("COOLSOCKET_PORT", "5000")

        config = build_config(build_parser().parse_args(["serve", "--timeout", "0"]))

        assert config.timeout is None
        assert config.port == 5000

    def test_serve_environment_without_flags(self, monkeypatch):
        """Test that flags left out keep their environment values."""
        monkeypatch.setenv("COOLSOCKET_TIMEOUT", "30")
        monkeypatch.setenv("COOLSOCKET_MAX_CONNECTIONS", "0")

        config = build_config(build_parser().parse_args(["serve", "--port", "6000"]))

        assert config.timeout == 30.0
        assert config.max_connections == 0
        assert config.port == 6000

    def test_command_required(self):
        """Test that a subcommand is mandatory."""
        with pytest.raises(SystemExit):
            main([])
