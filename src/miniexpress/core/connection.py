"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

One Connection per accepted TCP socket. It reads request heads, streams
bodies into the request context, hands each request to the dispatcher,
flushes the response, and decides whether the socket can carry another
request.

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

TCP does not preserve message boundaries, so an HTTP request can arrive
split across any number of reads. The connection relies on the framing
HTTP itself provides:

    GET /data?x=1 HTTP/1.1\r\n     ┐
    Host: localhost\r\n            │  readuntil(b"\r\n\r\n")
    Content-Length: 7\r\n          │  (bounded by max_header_size)
    \r\n                           ┘
    a=1&b=2                        ┐  Content-Length bytes, or
                                   ┘  chunked frames until a 0-size chunk

The head is read here, before dispatch. The body is left on the socket
and exposed as an async iterator that the Request's body task consumes,
so handlers and middleware run while the body may still be arriving.

=============================================================================
CONNECTION LOOP
=============================================================================

    ┌─────────────────────────────────────────────────────────────────┐
    │                                                                  │
    │   ┌──────────────┐  None (client closed / idle timeout)         │
    │   │  read head   │──────────────────────────────────┐           │
    │   └──────┬───────┘                                  │           │
    │          │  HTTPParseError → 4xx/5xx text, close ───┤           │
    │          ▼                                          │           │
    │   ┌──────────────┐                                  │           │
    │   │  dispatch    │  middleware → route → handler    │           │
    │   └──────┬───────┘                                  │           │
    │          ▼                                          │           │
    │   ┌──────────────┐                                  │           │
    │   │  drain()     │  flush what the Response wrote   │           │
    │   └──────┬───────┘                                  │           │
    │          ▼                                          │           │
    │   keep-alive and body fully read? ── no ────────────┤           │
    │          │ yes                                      ▼           │
    │          └──────► next request               close socket       │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import asyncio
import logging
import re
import time
import uuid
from enum import Enum
from typing import AsyncIterator, Optional

from ..config import ServerConfig
from ..dispatcher import Dispatcher
from ..http.request import HTTPParseError, Request, RequestHead, parse_head
from ..http.response import Response
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)

HEAD_TERMINATOR = b"\r\n\r\n"
CONTENT_LENGTH_PATTERN = re.compile(r"^[0-9]+\Z")


class ConnectionState(Enum):
    """Where a connection is in its lifecycle, for logs and debugging."""

    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSED = "closed"


class Connection:
    """
    Serves every request that arrives on one client socket.

    Attributes:
        id: Short identifier used in log lines.
        address: Client (ip, port).
        state: Current ConnectionState.
        requests_handled: Requests completed on this socket so far.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        dispatcher: Dispatcher,
        config: ServerConfig,
    ):
        self.reader = reader
        self.writer = writer
        self.dispatcher = dispatcher
        self.config = config

        self.id = uuid.uuid4().hex[:8]
        peer = writer.get_extra_info("peername")
        self.address = tuple(peer[:2]) if peer else ("", 0)
        self.state = ConnectionState.NEW
        self.requests_handled = 0

    def __repr__(self) -> str:
        return f"<Connection {self.id} {self.address} {self.state.value}>"

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    async def serve(self) -> None:
        """Handle requests until the client leaves or reuse is impossible."""
        logger.debug(f"[{self.id}] Connection from {self.address[0]}:{self.address[1]}")
        try:
            while True:
                try:
                    head = await self.read_head()
                    if head is None:
                        break
                    reusable = await self.handle(head)
                except HTTPParseError as e:
                    logger.debug(f"[{self.id}] Rejecting request: {e}")
                    await self._send_error(e.status_code, str(e))
                    break

                if not reusable:
                    break

                self.state = ConnectionState.KEEP_ALIVE
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug(f"[{self.id}] Client went away: {e!r}")
        except Exception as e:
            logger.exception(f"[{self.id}] Connection error: {e}")
        finally:
            self.close()

    async def read_head(self) -> Optional[RequestHead]:
        """
        Read and parse the next request head.

        Idle kept-alive connections wait at most keep_alive_timeout for
        the next head; the first request on a socket waits indefinitely.

        Returns:
            The parsed head, or None if the client closed the connection
            or the keep-alive wait expired.

        Raises:
            HTTPParseError: Malformed, truncated or oversized head.
        """
        self.state = ConnectionState.READING
        timeout = self.config.keep_alive_timeout if self.requests_handled else None

        try:
            data = await asyncio.wait_for(self.reader.readuntil(HEAD_TERMINATOR), timeout)
        except asyncio.TimeoutError:
            logger.debug(f"[{self.id}] Keep-alive timeout")
            return None
        except asyncio.IncompleteReadError as e:
            if e.partial.strip():
                raise HTTPParseError("Incomplete request head")
            return None
        except asyncio.LimitOverrunError:
            raise HTTPParseError(
                "Request head too large",
                status_code=HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE,
            )

        # Tolerate stray CRLFs between pipelined requests
        return parse_head(data.lstrip(b"\r\n"))

    async def handle(self, head: RequestHead) -> bool:
        """
        Dispatch one request and flush its response.

        Returns:
            True if the connection may carry another request.
        """
        stream = self._open_body(head)
        keep_alive = self.config.keep_alive and head.is_keep_alive

        self.state = ConnectionState.PROCESSING
        started = time.perf_counter()
        request = Request.from_head(head, stream, self.address)
        response = Response(
            self.writer,
            server_name=self.config.server_name,
            keep_alive=keep_alive,
        )

        outcome = await self.dispatcher.dispatch(request, response)

        self.state = ConnectionState.WRITING
        await self.writer.drain()
        # A kept-alive socket must be positioned at the next request head
        drain_timeout = self.config.keep_alive_timeout if keep_alive else 0
        body_complete = await request.discard_body(timeout=drain_timeout)
        self.requests_handled += 1

        duration_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"[{request.id}] {request.method} {request.url} -> "
            f"{int(response.status_code)} {outcome.value} ({duration_ms:.2f}ms)"
        )
        return keep_alive and body_complete

    # =========================================================================
    # BODY STREAMS
    # =========================================================================

    def _open_body(self, head: RequestHead) -> Optional[AsyncIterator[bytes]]:
        """
        Pick the body framing declared by the head.

        Raises:
            HTTPParseError:
                400  Content-Length is not a non-negative integer
                413  Content-Length above max_body_size
                501  transfer coding other than chunked
        """
        if "transfer-encoding" in head.headers:
            if not head.is_chunked:
                raise HTTPParseError(
                    f"Unsupported Transfer-Encoding: {head.headers['transfer-encoding']}",
                    status_code=HTTPStatus.NOT_IMPLEMENTED,
                )
            return self._chunked_body()

        declared = head.headers.get("content-length")
        if declared is not None and not CONTENT_LENGTH_PATTERN.match(declared):
            raise HTTPParseError(f"Invalid Content-Length: {declared!r}")

        length = head.content_length
        if length > self.config.max_body_size:
            raise HTTPParseError(
                f"Request body too large: {length} bytes",
                status_code=HTTPStatus.PAYLOAD_TOO_LARGE,
            )
        if length <= 0:
            return None
        return self._fixed_length_body(length)

    async def _fixed_length_body(self, length: int) -> AsyncIterator[bytes]:
        remaining = length
        while remaining > 0:
            chunk = await self.reader.read(min(self.config.chunk_size, remaining))
            if not chunk:
                raise ConnectionError(
                    f"Client closed connection with {remaining} body bytes outstanding"
                )
            remaining -= len(chunk)
            yield chunk

    async def _chunked_body(self) -> AsyncIterator[bytes]:
        """
        Decode Transfer-Encoding: chunked.

            7\r\n          ← chunk size in hex (extensions after ';' ignored)
            a=1&b=2\r\n    ← chunk data + CRLF
            0\r\n          ← last chunk
            \r\n           ← end of (empty) trailer section
        """
        total = 0
        while True:
            size_line = await self.reader.readline()
            if not size_line:
                raise ConnectionError("Client closed connection mid-body")
            try:
                size = int(size_line.split(b";", 1)[0].strip(), 16)
            except ValueError:
                raise HTTPParseError(f"Invalid chunk size: {size_line!r}")

            if size == 0:
                # Skip trailer fields up to the blank line
                while (await self.reader.readline()).strip():
                    pass
                return

            total += size
            if total > self.config.max_body_size:
                raise HTTPParseError(
                    f"Request body too large: more than {self.config.max_body_size} bytes",
                    status_code=HTTPStatus.PAYLOAD_TOO_LARGE,
                )
            data = await self.reader.readexactly(size)
            await self.reader.readexactly(2)
            yield data

    # =========================================================================
    # ERRORS AND CLOSING
    # =========================================================================

    async def _send_error(self, status: int, message: str) -> None:
        """
        Answer a request that never reached the dispatcher.

        Used for errors in the head (parse failures, size limits); the
        connection is closed right after.
        """
        response = Response(self.writer, server_name=self.config.server_name)
        response.status(status).send(message)
        await self.writer.drain()

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        self.writer.close()
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")
