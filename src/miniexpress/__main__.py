"""
=============================================================================
MINIEXPRESS CLI ENTRY POINT
=============================================================================

Runs the reference deployment: access logging plus the demo routes.

    # Run with defaults (127.0.0.1:3000)
    python -m miniexpress

    # Custom port, all interfaces
    python -m miniexpress --host 0.0.0.0 --port 8000

    # Structured access logs
    python -m miniexpress --log-format json

Defaults come from the environment (see ServerConfig.from_env), and
flags override them.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig
from .handlers import register_demo_routes
from .middleware import LoggingMiddleware
from .server import MiniExpress


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="miniexpress",
        description="Minimal HTTP request-dispatch engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m miniexpress                       # Run with defaults
  python -m miniexpress --port 8000           # Custom port
  python -m miniexpress --host 0.0.0.0        # Listen on all interfaces
  python -m miniexpress --log-format json     # JSON access logs
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})"
    )

    parser.add_argument(
        "--no-keep-alive",
        action="store_true",
        default=not defaults.keep_alive,
        help="Close every connection after one response"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level.upper()})"
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=defaults.log_format,
        help=f"Access log format (default: {defaults.log_format})"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"MiniExpress {__version__}"
    )

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    try:
        defaults = ServerConfig.from_env()
    except ValueError as e:
        print(f"Invalid environment configuration: {e}", file=sys.stderr)
        return 2

    args = build_parser(defaults).parse_args(argv)

    config = ServerConfig(
        host=args.host,
        port=args.port,
        keep_alive=not args.no_keep_alive,
        log_level=args.log_level,
        log_format=args.log_format,
    )

    try:
        app = MiniExpress(config)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    # Logging first so it sees every request
    app.use(LoggingMiddleware(log_format=config.log_format))
    register_demo_routes(app)

    try:
        app.listen()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
