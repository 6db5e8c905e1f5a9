"""
=============================================================================
COOLSOCKET CLI ENTRY POINT
=============================================================================

Command-line interface for running an echo server and sending messages.

=============================================================================
USAGE
=============================================================================

    # Echo server on an OS-chosen port (printed at startup)
    python -m coolsocket serve

    # Fixed port, all interfaces, 30 second connection timeout
    python -m coolsocket serve --host 0.0.0.0 --port 5000 --timeout 30

    # Send one message and print the reply
    python -m coolsocket send --port 5000 "hello"

    # JSON logs for a log aggregator
    python -m coolsocket serve --log-format json

Defaults for `serve` come from COOLSOCKET_* environment variables (see
ServerConfig.from_env); command-line flags override them.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .client import Client
from .config import ServerConfig, _parse_timeout
from .errors import CoolSocketError
from .handlers import EchoHandler
from .log import setup_logging
from .server import CoolSocketServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coolsocket",
        description="Framed-message socket server and client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m coolsocket serve                       # Echo server, random port
  python -m coolsocket serve --port 5000           # Fixed port
  python -m coolsocket send --port 5000 "hello"    # Send one message
        """
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"coolsocket {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # ─────────────────────────────────────────────────────────────────────
    # SERVE
    # ─────────────────────────────────────────────────────────────────────

    # Only flags actually given end up in args; build_config() overrides
    # the environment with exactly those, --timeout 0 included
    serve = subparsers.add_parser(
        "serve",
        help="Run an echo server until Ctrl+C",
        argument_default=argparse.SUPPRESS,
    )
    serve.add_argument("--host", "-H", help="Host to bind to (default: 127.0.0.1)")
    serve.add_argument("--port", "-p", type=int, help="Port to listen on (default: 0 = any)")
    serve.add_argument(
        "--timeout", "-t",
        type=_parse_timeout,
        help="Connection timeout in seconds (0 = none)"
    )
    serve.add_argument("--max-connections", "-m", type=int, help="Concurrent connections (0 = unlimited)")
    serve.add_argument("--workers", "-w", type=int, help="Worker threads (default: max connections)")
    serve.add_argument(
        "--leak-threshold",
        type=float,
        help="Warn about connections open longer than this many seconds"
    )
    serve.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    serve.add_argument("--log-format", choices=["text", "json"], help="Log format (default: text)")

    # ─────────────────────────────────────────────────────────────────────
    # SEND
    # ─────────────────────────────────────────────────────────────────────

    send = subparsers.add_parser("send", help="Send one message and print the reply")
    send.add_argument("message", help="Message body (UTF-8 text)")
    send.add_argument("--host", "-H", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    send.add_argument("--port", "-p", type=int, required=True, help="Server port")
    send.add_argument("--timeout", "-t", type=_parse_timeout, default=5.0, help="Timeout in seconds (default: 5)")

    return parser


SERVE_OPTIONS = (
    "host", "port", "timeout", "max_connections", "workers",
    "leak_threshold", "log_level", "log_format",
)


def build_config(args) -> ServerConfig:
    """Environment defaults, overridden by every serve flag that was given."""
    config = ServerConfig.from_env()

    given = vars(args)
    for name in SERVE_OPTIONS:
        if name in given:
            setattr(config, name, given[name])

    return config


def serve(args) -> int:
    config = build_config(args)

    setup_logging(config.log_level, config.log_format)

    server = CoolSocketServer(EchoHandler(), config)
    server.serve_forever()
    return 0


def send(args) -> int:
    client = Client(timeout=args.timeout)

    with client.connect((args.host, args.port)) as conn:
        conn.reply(args.message)
        reply = conn.receive()

    print(reply.body.decode("utf-8", errors="replace"))
    return 0


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        if args.command == "serve":
            return serve(args)
        return send(args)
    except (CoolSocketError, OSError, RuntimeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    sys.exit(main())
