"""
Unit tests for ServerConfig.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from coolsocket.config import DEFAULT_WORKERS, NO_TIMEOUT, ServerConfig, _parse_timeout


class TestServerConfig:
    """Tests for defaults, derived values and validation."""

    def test_defaults(self):
        """Test the default configuration."""
        config = ServerConfig()

        assert config.host == "127.0.0.1"
        assert config.port == 0
        assert config.timeout is NO_TIMEOUT
        assert config.max_connections == 10
        assert config.executor is None
        config.validate()

    def test_pool_size_follows_max_connections(self):
        """Test that the pool matches the connection limit by default."""
        assert ServerConfig(max_connections=4).pool_size == 4

    def test_pool_size_explicit_workers(self):
        """Test that workers overrides the derived size."""
        assert ServerConfig(max_connections=4, workers=2).pool_size == 2

    def test_pool_size_unlimited_connections(self):
        """Test the fallback when connections are unlimited."""
        assert ServerConfig(max_connections=0).pool_size == DEFAULT_WORKERS

    def test_pool_grows_only_when_unbounded(self):
        """Test that the pool grows only with no limit and no explicit worker count."""
        assert ServerConfig(max_connections=0).pool_grows is True
        assert ServerConfig(max_connections=0, workers=3).pool_grows is False
        assert ServerConfig(max_connections=4).pool_grows is False

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 65536},
        {"backlog": 0},
        {"timeout": 0},
        {"timeout": -1.5},
        {"accept_interval": 0},
        {"max_connections": -1},
        {"workers": 0},
        {"executor": object()},
        {"max_header_size": 8},
        {"leak_threshold": 0},
        {"log_format": "xml"},
    ])
    def test_invalid_values(self, overrides):
        """Test that every invalid value is caught by validate()."""
        with pytest.raises(ValueError):
            ServerConfig(**overrides).validate()

    def test_external_executor_accepted(self):
        """Test that a standard library executor is a valid executor."""
        with ThreadPoolExecutor(max_workers=1) as executor:
            ServerConfig(executor=executor).validate()


class TestFromEnv:
    """Tests for ServerConfig.from_env()."""

    def test_defaults_without_env(self, monkeypatch):
        """Test that an empty environment gives the defaults."""
        for name in ("HOST", "PORT", "TIMEOUT", "MAX_CONNECTIONS", "WORKERS", "LOG_LEVEL", "LOG_FORMAT"):
            monkeypatch.delenv(f"COOLSOCKET_{name}", raising=False)

        config = ServerConfig.from_env()

        assert config.port == 0
        assert config.timeout is NO_TIMEOUT
        assert config.workers is None

    def test_reads_env(self, monkeypatch):
        """Test that every supported variable is applied."""
        monkeypatch.setenv("COOLSOCKET_HOST", "0.0.0.0")
        monkeypatch.setenv("COOLSOCKET_PORT", "5000")
        monkeypatch.setenv("COOLSOCKET_TIMEOUT", "2.5")
        monkeypatch.setenv("COOLSOCKET_MAX_CONNECTIONS", "3")
        monkeypatch.setenv("COOLSOCKET_WORKERS", "6")
        monkeypatch.setenv("COOLSOCKET_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("COOLSOCKET_LOG_FORMAT", "json")

        config = ServerConfig.from_env()

        assert config.host == "0.0.0.0"
        assert config.port == 5000
        assert config.timeout == 2.5
        assert config.max_connections == 3
        assert config.workers == 6
        assert config.log_level == "DEBUG"
        assert config.log_format == "json"

    @pytest.mark.parametrize("value,expected", [
        ("", NO_TIMEOUT),
        ("  ", NO_TIMEOUT),
        ("0", NO_TIMEOUT),
        ("-1", NO_TIMEOUT),
        ("0.25", 0.25),
        ("30", 30.0),
    ])
    def test_parse_timeout(self, value, expected):
        """Test timeout parsing, where zero or less means no timeout."""
        assert _parse_timeout(value) == expected
