"""
=============================================================================
RESPONSE CONTEXT
=============================================================================

The object every middleware and route handler receives as its second
argument. It owns exactly one outgoing HTTP/1.1 response.

=============================================================================
PENDING STATE VS TERMINAL WRITES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   PENDING (nothing on the wire yet)       TERMINAL (writes, once)   │
    │   ────────────────────────────────        ─────────────────────────  │
    │   status(code)      → returns self        send(text)  text/plain    │
    │   set_header(n, v)  → returns self        json(value) application/  │
    │                                                       json          │
    │                                           end()       no body       │
    │                                                                      │
    │   response.status(404).send("Not Found")                            │
    │   ────────┬────────  ───────┬─────────                              │
    │           │                 └── serializes head + body, writes it,  │
    │           │                     sets finished = True                │
    │           └──────────────────── only records the pending status     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

`finished` is the single signal the middleware chain and the dispatcher
look at to decide whether anything else should run for this request.

=============================================================================
WIRE FORMAT
=============================================================================

    HTTP/1.1 200 OK\r\n                       ← status line
    Content-Type: application/json\r\n        ← from send()/json()
    Content-Length: 17\r\n                    ← always computed
    Date: Sat, 17 Oct 2026 12:00:00 GMT\r\n   ← auto-added
    Server: MiniExpress/1.0\r\n               ← auto-added
    Connection: keep-alive\r\n                ← decided by the connection
    \r\n
    {"a":"1","b":"2"}

The bytes go to `writer.write()`, which for an asyncio.StreamWriter only
buffers them; the connection awaits `drain()` after dispatch.

=============================================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol
import json

from .status_codes import HTTPStatus, reason_phrase


class ResponseAlreadySent(RuntimeError):
    """Raised on a second terminal write to the same response."""


class Writer(Protocol):
    """Anything with a synchronous write(bytes); asyncio.StreamWriter fits."""

    def write(self, data: bytes) -> None: ...


class Response:
    """
    Per-request response context.

    =========================================================================
    USAGE
    =========================================================================

        async def home(request, response):
            response.send("Welcome to Mini Express!")

        async def create(request, response):
            response.status(201).json({"created": True})

        async def block(request, response):
            # Middleware: answer now, skip everything downstream
            if request.get_header("x-api-key") != "secret":
                response.status(401).send("Unauthorized")

    =========================================================================
    """

    def __init__(
        self,
        writer: Writer,
        server_name: str = "MiniExpress/1.0",
        keep_alive: bool = False,
        version: str = "HTTP/1.1",
    ):
        """
        Args:
            writer: Transport sink for the serialized response.
            server_name: Value of the Server header.
            keep_alive: Whether the connection stays open afterwards;
                        decides the Connection header.
            version: HTTP version used in the status line.
        """
        self._writer = writer
        self._server_name = server_name
        self.keep_alive = keep_alive
        self.version = version

        self.status_code: int = HTTPStatus.OK
        self.headers: Dict[str, str] = {}
        self.body: bytes = b""
        self.finished = False

    def __repr__(self) -> str:
        state = "finished" if self.finished else "pending"
        return f"<Response {self.status_code} {state}>"

    # =========================================================================
    # PENDING STATE
    # =========================================================================

    def status(self, code: int) -> "Response":
        """
        Set the status used by the next terminal write.

        Returns self, so it chains: response.status(404).send("Not Found")
        """
        self.status_code = code
        return self

    def set_header(self, name: str, value: str) -> "Response":
        """Add a header to the pending response. Returns self."""
        self.headers[name] = value
        return self

    # =========================================================================
    # TERMINAL WRITES
    # =========================================================================

    def send(self, text: str) -> None:
        """Finish the response with a plain-text body."""
        self._finish(str(text).encode("utf-8"), "text/plain")

    def json(self, value: Any) -> None:
        """
        Finish the response with `value` serialized as JSON.

        Compact separators and raw UTF-8, so {"a": "1"} goes out as
        {"a":"1"}.
        """
        payload = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        self._finish(payload.encode("utf-8"), "application/json")

    def end(self) -> None:
        """
        Finish the response without a body.

        The head still goes out (with Content-Length: 0) so the client
        receives a complete message.
        """
        self._finish(b"", None)

    def _finish(self, body: bytes, content_type: Optional[str]) -> None:
        if self.finished:
            raise ResponseAlreadySent(
                f"Response already sent with status {self.status_code}"
            )
        if content_type is not None:
            self.headers["Content-Type"] = content_type
        self.body = body
        self.finished = True
        self._writer.write(self.to_bytes())

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    @property
    def status_line(self) -> str:
        """e.g. "HTTP/1.1 404 Not Found" """
        return f"{self.version} {int(self.status_code)} {reason_phrase(self.status_code)}"

    def to_bytes(self) -> bytes:
        """Serialize status line, headers and body."""
        headers = dict(self.headers)
        headers["Content-Length"] = str(len(self.body))
        headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        headers.setdefault("Server", self._server_name)
        headers.setdefault("Connection", "keep-alive" if self.keep_alive else "close")

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        lines.append("")
        head = "\r\n".join(lines).encode("latin-1", errors="replace") + b"\r\n"
        return head + self.body


def format_http_date(dt: datetime) -> str:
    """
    Format a UTC datetime as an HTTP-date (RFC 7231).

    Example: Sat, 17 Oct 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )
