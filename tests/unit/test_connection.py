"""
Unit tests for the connection loop, driven through an in-memory stream.
"""

import asyncio

import pytest

from miniexpress.config import ServerConfig
from miniexpress.core.connection import Connection, ConnectionState
from miniexpress.dispatcher import Dispatcher
from miniexpress.http.router import RouteTable
from miniexpress.middleware.base import MiddlewareChain


def make_routes() -> RouteTable:
    routes = RouteTable()

    async def echo(request, response):
        response.json(request.body)

    async def home(request, response):
        response.send("home")

    async def ignore_body(request, response):
        response.send("ignored")

    routes.add_route("POST", "/data", echo)
    routes.add_route("GET", "/", home)
    routes.add_route("POST", "/ignore", ignore_body)
    return routes


def serve(raw: bytes, writer, config: ServerConfig = None, middleware=None, eof=True):
    """Feed raw bytes to a Connection and run it until it closes."""
    config = config or ServerConfig(keep_alive_timeout=0.2)
    dispatcher = Dispatcher(make_routes(), middleware or MiddlewareChain())

    async def main():
        reader = asyncio.StreamReader(limit=config.max_header_size)
        reader.feed_data(raw)
        if eof:
            reader.feed_eof()
        connection = Connection(reader, writer, dispatcher, config)
        await connection.serve()
        return connection

    return asyncio.run(main())


def responses(data: bytes):
    """Split concatenated responses into (status line, body) pairs."""
    results = []
    while data:
        head, _, rest = data.partition(b"\r\n\r\n")
        lines = head.decode("latin-1").split("\r\n")
        headers = dict(line.split(": ", 1) for line in lines[1:])
        length = int(headers["Content-Length"])
        results.append((lines[0], headers, rest[:length]))
        data = rest[length:]
    return results


class TestConnection:
    """Tests for Connection."""

    def test_single_request_then_eof(self, writer):
        connection = serve(b"GET / HTTP/1.1\r\nHost: x\r\n\r\n", writer)

        [(status, headers, body)] = responses(writer.data)
        assert status == "HTTP/1.1 200 OK"
        assert headers["Connection"] == "keep-alive"
        assert body == b"home"
        assert connection.state is ConnectionState.CLOSED
        assert connection.requests_handled == 1
        assert writer.closed

    def test_form_body(self, writer, sample_post_request):
        serve(sample_post_request, writer)

        [(status, headers, body)] = responses(writer.data)
        assert status == "HTTP/1.1 200 OK"
        assert headers["Connection"] == "close"
        assert body == b'{"a":"1","b":"2"}'

    def test_keep_alive_serves_several_requests(self, writer):
        raw = (
            b"GET / HTTP/1.1\r\n\r\n"
            b"POST /data HTTP/1.1\r\nContent-Length: 3\r\n\r\nx=5"
            b"GET /missing HTTP/1.1\r\n\r\n"
        )
        connection = serve(raw, writer)

        results = responses(writer.data)
        assert [r[0] for r in results] == [
            "HTTP/1.1 200 OK",
            "HTTP/1.1 200 OK",
            "HTTP/1.1 404 Not Found",
        ]
        assert results[1][2] == b'{"x":"5"}'
        assert connection.requests_handled == 3

    def test_connection_close_stops_loop(self, writer):
        raw = (
            b"GET / HTTP/1.1\r\nConnection: close\r\n\r\n"
            b"GET / HTTP/1.1\r\n\r\n"
        )
        connection = serve(raw, writer)

        assert len(responses(writer.data)) == 1
        assert connection.requests_handled == 1

    def test_keep_alive_disabled(self, writer):
        raw = b"GET / HTTP/1.1\r\n\r\nGET / HTTP/1.1\r\n\r\n"
        serve(raw, writer, config=ServerConfig(keep_alive=False))

        [(_, headers, _)] = responses(writer.data)
        assert headers["Connection"] == "close"

    def test_http10_closes_by_default(self, writer):
        serve(b"GET / HTTP/1.0\r\n\r\nGET / HTTP/1.0\r\n\r\n", writer)

        assert len(responses(writer.data)) == 1

    def test_idle_keep_alive_times_out(self, writer):
        connection = serve(b"GET / HTTP/1.1\r\n\r\n", writer, eof=False)

        assert connection.requests_handled == 1
        assert connection.state is ConnectionState.CLOSED

    def test_chunked_body(self, writer):
        raw = (
            b"POST /data HTTP/1.1\r\n"
            b"Transfer-Encoding: chunked\r\n"
            b"Connection: close\r\n\r\n"
            b"3\r\na=1\r\n"
            b"4;ext=1\r\n&b=2\r\n"
            b"0\r\n\r\n"
        )
        serve(raw, writer)

        [(status, _, body)] = responses(writer.data)
        assert status == "HTTP/1.1 200 OK"
        assert body == b'{"a":"1","b":"2"}'

    def test_unrouted_body_drained_for_next_request(self, writer):
        raw = (
            b"POST /missing HTTP/1.1\r\nContent-Length: 3\r\n\r\na=1"
            b"GET / HTTP/1.1\r\n\r\n"
        )
        connection = serve(raw, writer)

        results = responses(writer.data)
        assert [r[0] for r in results] == [
            "HTTP/1.1 404 Not Found",
            "HTTP/1.1 200 OK",
        ]
        assert results[0][1]["Connection"] == "keep-alive"
        assert results[1][2] == b"home"
        assert connection.requests_handled == 2

    def test_short_circuited_body_drained_for_next_request(self, writer):
        async def block_posts(request, response):
            if request.method == "POST":
                response.status(401).send("Unauthorized")

        raw = (
            b"POST /data HTTP/1.1\r\nContent-Length: 7\r\n\r\na=1&b=2"
            b"GET / HTTP/1.1\r\n\r\n"
        )
        middleware = MiddlewareChain().register(block_posts)
        serve(raw, writer, middleware=middleware)

        assert [r[0] for r in responses(writer.data)] == [
            "HTTP/1.1 401 Unauthorized",
            "HTTP/1.1 200 OK",
        ]

    def test_unread_body_closes_connection(self, writer):
        async def block(request, response):
            response.status(401).send("Unauthorized")

        raw = (
            b"POST /data HTTP/1.1\r\nContent-Length: 10\r\n\r\na=1"
        )
        middleware = MiddlewareChain().register(block)
        connection = serve(raw, writer, middleware=middleware, eof=False)

        [(status, _, _)] = responses(writer.data)
        assert status == "HTTP/1.1 401 Unauthorized"
        assert connection.requests_handled == 1
        assert connection.state is ConnectionState.CLOSED

    def test_malformed_request_line(self, writer):
        serve(b"NOT A REQUEST\r\n\r\n", writer)

        [(status, headers, _)] = responses(writer.data)
        assert status == "HTTP/1.1 400 Bad Request"
        assert headers["Connection"] == "close"

    def test_unsupported_version(self, writer):
        serve(b"GET / HTTP/3.0\r\n\r\n", writer)

        [(status, _, _)] = responses(writer.data)
        assert status == "HTTP/1.1 505 HTTP Version Not Supported"

    def test_head_too_large(self, writer):
        config = ServerConfig(max_header_size=1024)
        raw = b"GET / HTTP/1.1\r\nX-Big: " + b"a" * 4096 + b"\r\n\r\n"
        serve(raw, writer, config=config)

        [(status, _, _)] = responses(writer.data)
        assert status == "HTTP/1.1 431 Request Header Fields Too Large"

    @pytest.mark.parametrize("value", [b"abc", b"-5", b"5, 7", b"+3", b""])
    def test_invalid_content_length(self, writer, value):
        handled = []

        async def record(request, response):
            handled.append(request.url)

        raw = b"POST /data HTTP/1.1\r\nContent-Length: " + value + b"\r\n\r\na=1&b=2"
        middleware = MiddlewareChain().register(record)
        connection = serve(raw, writer, middleware=middleware)

        [(status, headers, _)] = responses(writer.data)
        assert status == "HTTP/1.1 400 Bad Request"
        assert headers["Connection"] == "close"
        assert handled == []
        assert connection.requests_handled == 0

    def test_body_too_large(self, writer):
        config = ServerConfig(max_body_size=4)
        serve(b"POST /data HTTP/1.1\r\nContent-Length: 100\r\n\r\n", writer, config=config)

        [(status, _, _)] = responses(writer.data)
        assert status == "HTTP/1.1 413 Payload Too Large"

    def test_unsupported_transfer_encoding(self, writer):
        serve(b"POST /data HTTP/1.1\r\nTransfer-Encoding: gzip\r\n\r\n", writer)

        [(status, _, _)] = responses(writer.data)
        assert status == "HTTP/1.1 501 Not Implemented"

    def test_truncated_head(self, writer):
        serve(b"GET / HTTP/1.1\r\nHost: x", writer)

        [(status, _, _)] = responses(writer.data)
        assert status == "HTTP/1.1 400 Bad Request"

    def test_client_closes_without_sending(self, writer):
        connection = serve(b"", writer)

        assert writer.data == b""
        assert connection.requests_handled == 0
        assert writer.closed

    def test_body_cut_short(self, writer):
        serve(b"POST /data HTTP/1.1\r\nContent-Length: 10\r\n\r\na=1", writer)

        [(status, _, _)] = responses(writer.data)
        assert status == "HTTP/1.1 500 Internal Server Error"
