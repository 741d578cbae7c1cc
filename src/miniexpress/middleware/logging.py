"""
=============================================================================
LOGGING MIDDLEWARE
=============================================================================

Writes one access-log line per inbound request.

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default), close to Apache's common log format:
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 127.0.0.1 - - [17/Oct/2026:10:55:36 +0000] "POST /data?x=1" 3f9c2a1b │
    │ ─────────        ──────────────────────────  ───────────────  ──────── │
    │ client IP        timestamp                    method + URL    req id  │
    └─────────────────────────────────────────────────────────────────────┘

    JSON, for log aggregators:
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"request_id": "3f9c2a1b", "method": "POST", "url": "/data?x=1",    │
    │  "client_ip": "127.0.0.1", "user_agent": "curl/8.5.0",              │
    │  "timestamp": "17/Oct/2026:10:55:36 +0000"}                         │
    └─────────────────────────────────────────────────────────────────────┘

The chain runs middleware before routing and has no "after" phase, so the
line is written when the request arrives. Status and timing are logged at
DEBUG by the connection once the response is out.

=============================================================================
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from .base import Middleware
from ..http.request import Request
from ..http.response import Response


logger = logging.getLogger("miniexpress.access")


@dataclass
class RequestLog:
    """One access-log entry."""

    request_id: str
    method: str
    url: str
    client_ip: str
    user_agent: str
    timestamp: str

    def to_text(self) -> str:
        return (
            f'{self.client_ip or "-"} - - [{self.timestamp}] '
            f'"{self.method} {self.url}" {self.request_id}'
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self))


class LoggingMiddleware(Middleware):
    """
    Request logging middleware.

    Register it first so it sees every request, including the ones later
    middleware rejects:

        app.use(LoggingMiddleware())
        app.use(RequireApiKey("secret"))

    Options:

        LoggingMiddleware(log_format="json")          # structured lines
        LoggingMiddleware(skip_paths=["/health"])     # drop noisy probes
        LoggingMiddleware(log_level=logging.DEBUG)    # quieter in prod
    """

    def __init__(
        self,
        log_format: str = "text",
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        if log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', not {log_format!r}")
        self.log_format = log_format
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    async def __call__(self, request: Request, response: Response) -> None:
        if request.path in self.skip_paths:
            return

        entry = RequestLog(
            request_id=request.id,
            method=request.method,
            url=request.url,
            client_ip=request.client_address[0],
            user_agent=request.get_header("user-agent") or "-",
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        if self.log_format == "json":
            logger.log(self.log_level, entry.to_json())
        else:
            logger.log(self.log_level, entry.to_text())
