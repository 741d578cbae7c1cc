"""
=============================================================================
REQUEST CONTEXT
=============================================================================

Turns an inbound HTTP/1.1 request into the object every middleware and
route handler receives as its first argument.

=============================================================================
TWO HALVES OF A REQUEST
=============================================================================

An HTTP request reaches us in two phases, and the request context mirrors
that split:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   POST /data?debug=1 HTTP/1.1\r\n       ┐                            │
    │   Host: localhost:3000\r\n              │  HEAD                      │
    │   Content-Type: application/x-www-...   │  parsed synchronously      │
    │   Content-Length: 7\r\n                 │  → method, url, headers,   │
    │   \r\n                                  ┘    request.query           │
    │                                                                      │
    │   a=1&b=2                               ┐  BODY                      │
    │                                         │  streamed in chunks,       │
    │                                         ┘  parsed once on end        │
    │                                              → request.body          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The head is always complete before a Request is built, so `query` is
available immediately. The body may still be in flight: the Request
starts a background task that accumulates chunks and parses them as a
form when the stream ends.

=============================================================================
THE BODY TASK
=============================================================================

    Request(...)                        wait_body()
        │                                   │
        ├── parse query  (sync)             │
        │                                   │
        └── create_task(_read_body) ───────►│ awaits the task
                 │                          │
                 │  async for chunk:        │
                 │      buffer += chunk     │
                 │                          │
                 │  body = parse_form(buf)  │
                 └──────────────────────────┴──► request.body is ready

The dispatcher awaits wait_body() before calling the route handler, so a
handler can always read `request.body` directly. Middleware runs before
that point and must await wait_body() itself if it needs the body.

=============================================================================
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterable, Dict, Optional
from urllib.parse import parse_qsl, urlsplit


logger = logging.getLogger(__name__)


class HTTPParseError(Exception):
    """
    Raised when an inbound request head can't be understood.

    Carries the status code the connection should answer with:

        400 Bad Request                     - malformed request line/header
        413 Payload Too Large               - body exceeds the configured cap
        431 Request Header Fields Too Large - header block too long
        501 Not Implemented                 - unknown Transfer-Encoding
        505 HTTP Version Not Supported      - not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# REQUEST HEAD
# =============================================================================

@dataclass
class RequestHead:
    """
    The request line and headers of one HTTP request.

    Produced by parse_head() from the bytes preceding the blank line.
    Header names are stored lowercase; HTTP header names are
    case-insensitive, so normalizing once avoids .lower() everywhere.
    """

    method: str
    url: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def content_length(self) -> int:
        """Declared body length, 0 when absent."""
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def is_chunked(self) -> bool:
        """True when the body uses chunked transfer coding."""
        return "chunked" in self.headers.get("transfer-encoding", "").lower()

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client wants the connection reused.

        HTTP/1.1 keeps connections open unless "Connection: close";
        HTTP/1.0 closes them unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"


REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
HEADER_PATTERN = re.compile(r"^([^:\s]+):\s*(.*)$")


def parse_head(data: bytes) -> RequestHead:
    """
    Parse a request head (request line + headers, no trailing blank line).

    Lenient about header lines (malformed ones are skipped) and strict
    about the request line, which routing depends on.

    Args:
        data: Raw head bytes, with or without the terminating CRLFCRLF.

    Returns:
        The parsed RequestHead.

    Raises:
        HTTPParseError: If the request line is malformed or the version
            isn't HTTP/1.0 or HTTP/1.1.
    """
    text = data.decode("latin-1").rstrip("\r\n")
    lines = text.split("\r\n")

    match = REQUEST_LINE_PATTERN.match(lines[0])
    if not match:
        raise HTTPParseError(f"Invalid request line: {lines[0]!r}")

    method, url, version = match.groups()
    if version not in ("HTTP/1.0", "HTTP/1.1"):
        raise HTTPParseError(
            f"Unsupported HTTP version: {version}",
            status_code=505,
        )

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        header = HEADER_PATTERN.match(line)
        if not header:
            continue
        name, value = header.groups()
        name = name.lower()
        value = value.strip()
        # Repeated headers fold into one comma-separated value
        if name in headers:
            headers[name] += ", " + value
        else:
            headers[name] = value

    return RequestHead(method=method, url=url, version=version, headers=headers)


# =============================================================================
# FORM DECODING
# =============================================================================

def parse_form(data: str) -> Dict[str, str]:
    """
    Decode application/x-www-form-urlencoded text into a flat mapping.

    Best effort by contract: malformed input gives a partial or empty
    mapping, never an exception.

        "a=1&b=2"   → {"a": "1", "b": "2"}
        "a=1&a=2"   → {"a": "2"}         (last write wins)
        "flag"      → {"flag": ""}
        "x=%ZZ&y=1" → {"x": "%ZZ", "y": "1"}
        ""          → {}
    """
    if not data:
        return {}
    return dict(parse_qsl(data, keep_blank_values=True, errors="replace"))


# =============================================================================
# REQUEST CONTEXT
# =============================================================================

class Request:
    """
    Per-request context handed to middleware and route handlers.

    =========================================================================
    ATTRIBUTES
    =========================================================================

        method:         "GET", "POST", ...
        url:            Raw request target, "/data?debug=1"
        path:           Pathname only, "/data" (not decoded, not normalized)
        query_string:   Raw query, "debug=1"
        query:          {"debug": "1"}, available at construction
        body:           {"a": "1"}, empty until the body stream ends
        raw_body:       The accumulated body bytes
        headers:        Lowercase header name → value
        client_address: (ip, port) of the peer
        id:             Short random id for correlating log lines

    =========================================================================
    USAGE
    =========================================================================

        async def create(request, response):
            # Route handlers: body is already parsed
            response.json(request.body)

        async def audit(request, response):
            # Middleware: body may still be streaming
            body = await request.wait_body()
            ...

    =========================================================================
    """

    def __init__(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        stream: Optional[AsyncIterable[bytes]] = None,
        client_address: tuple = ("", 0),
        version: str = "HTTP/1.1",
    ):
        """
        Build the context and start consuming the body.

        Must be called from inside a running event loop when a stream is
        given, since the body reader is scheduled as a task.

        Args:
            method: Request method from the request line.
            url: Request target (path plus optional query string).
            headers: Header mapping with lowercase names.
            stream: Async iterable of body chunks. None means no body.
            client_address: Peer (ip, port).
            version: HTTP version from the request line.
        """
        self.method = method
        self.url = url
        self.version = version
        self.headers: Dict[str, str] = headers or {}
        self.client_address = client_address
        self.id = uuid.uuid4().hex[:8]

        parts = urlsplit(url)
        self.path = parts.path or "/"
        self.query_string = parts.query
        self.query: Dict[str, str] = parse_form(parts.query)

        self.body: Dict[str, str] = {}
        self.raw_body = b""
        self.body_loaded = False

        self._body_task: Optional[asyncio.Task] = None
        if stream is None:
            self.body_loaded = True
        else:
            self._body_task = asyncio.ensure_future(self._read_body(stream))

    @classmethod
    def from_head(
        cls,
        head: RequestHead,
        stream: Optional[AsyncIterable[bytes]] = None,
        client_address: tuple = ("", 0),
    ) -> "Request":
        """Build a context from a parsed RequestHead."""
        return cls(
            method=head.method,
            url=head.url,
            headers=head.headers,
            stream=stream,
            client_address=client_address,
            version=head.version,
        )

    def __repr__(self) -> str:
        return f"<Request {self.id} {self.method} {self.url}>"

    @property
    def content_type(self) -> str:
        """Content-Type without parameters, lowercase ("" if absent)."""
        return self.headers.get("content-type", "").split(";")[0].strip().lower()

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    # =========================================================================
    # BODY LIFECYCLE
    # =========================================================================

    async def _read_body(self, stream: AsyncIterable[bytes]) -> None:
        chunks = []
        async for chunk in stream:
            chunks.append(chunk)

        self.raw_body = b"".join(chunks)
        self.body = parse_form(self.raw_body.decode("utf-8", errors="replace"))
        self.body_loaded = True

    async def wait_body(self) -> Dict[str, str]:
        """
        Wait until the body stream has ended and been parsed.

        Safe to call any number of times; later calls return immediately.

        Returns:
            The parsed body mapping.

        Raises:
            Whatever the underlying stream raised (e.g. the client
            disconnecting mid-body).
        """
        if self._body_task is not None:
            await self._body_task
        return self.body

    async def discard_body(self, timeout: Optional[float] = 0) -> bool:
        """
        Settle the body reader once the response has been written.

        A handler that short-circuits, or a request no route matched, may
        never have looked at the body. The reader keeps draining it for up
        to `timeout` seconds so the connection stays in sync; if it still
        hasn't finished by then it is cancelled.

        Args:
            timeout: Seconds to let a running reader finish. 0 cancels it
                right away; None waits for the stream to end.

        Returns:
            True if the body was consumed completely and the connection
            can be reused for another request.
        """
        task = self._body_task
        if task is None:
            return True

        if not task.done() and timeout != 0:
            await asyncio.wait([task], timeout=timeout)

        if not task.done():
            task.cancel()
            await asyncio.wait([task])
            return False

        if task.cancelled():
            return False
        error = task.exception()
        if error is not None:
            logger.debug(f"[{self.id}] Body stream failed: {error!r}")
            return False
        return True
