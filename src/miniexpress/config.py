"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

All tunables for the transport and logging, in one dataclass.

=============================================================================
SOURCES OF CONFIGURATION
=============================================================================

    ┌──────────────────────┐     ┌──────────────────────┐
    │  Code                │     │  Environment         │
    │  ServerConfig(       │     │  MINIEXPRESS_PORT=80 │
    │      port=8000)      │     │  ServerConfig        │
    │                      │     │      .from_env()     │
    └──────────┬───────────┘     └──────────┬───────────┘
               │                            │
               └─────────────┬──────────────┘
                             ▼
                     config.validate()     ← fail fast, at startup
                             │
                             ▼
                     MiniExpress(config)

The CLI (python -m miniexpress) builds a ServerConfig from its flags, so
all three entry points end in the same validated object.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """
    Configuration for MiniExpress.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK
    - host, port, backlog

    HTTP
    - keep_alive, keep_alive_timeout, max_header_size, max_body_size,
      chunk_size, server_name

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """Interface to bind. "0.0.0.0" listens on all interfaces."""

    port: int = 3000
    """TCP port. 0 lets the OS choose a free one (used by tests)."""

    backlog: int = 128
    """Queued, not-yet-accepted connections the OS will hold."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Reuse connections for further requests when the client allows it."""

    keep_alive_timeout: Optional[float] = 5.0
    """
    Seconds an idle kept-alive connection may wait for its next request
    head before it is closed. None waits forever. Handlers themselves are
    never timed out.
    """

    max_header_size: int = 64 * 1024
    """Largest request head accepted, in bytes (431 beyond it)."""

    max_body_size: int = 10 * 1024 * 1024
    """Largest request body accepted, in bytes (413 beyond it)."""

    chunk_size: int = 64 * 1024
    """Bytes read from the socket per body chunk."""

    server_name: str = "MiniExpress/1.0"
    """Value of the Server response header."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """DEBUG, INFO, WARNING, ERROR or CRITICAL."""

    log_format: str = "text"
    """Access-log format for LoggingMiddleware: 'text' or 'json'."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Build a configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        MINIEXPRESS_HOST        Bind address      (default: 127.0.0.1)
        MINIEXPRESS_PORT        Port              (default: 3000)
        MINIEXPRESS_KEEP_ALIVE  1/0, true/false   (default: true)
        MINIEXPRESS_LOG_LEVEL   Logging level     (default: INFO)
        MINIEXPRESS_LOG_FORMAT  text or json      (default: text)

        =====================================================================
        """
        return cls(
            host=os.getenv("MINIEXPRESS_HOST", "127.0.0.1"),
            port=int(os.getenv("MINIEXPRESS_PORT", "3000")),
            keep_alive=_env_bool("MINIEXPRESS_KEEP_ALIVE", True),
            log_level=os.getenv("MINIEXPRESS_LOG_LEVEL", "INFO"),
            log_format=os.getenv("MINIEXPRESS_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """Raise ValueError for any setting that can't work."""
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.keep_alive_timeout is not None and self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.max_header_size < 1024:
            raise ValueError("max_header_size must be >= 1024")

        if self.max_body_size < 0:
            raise ValueError("max_body_size must be >= 0")

        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log_level: {self.log_level}")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', not {self.log_format!r}")
