"""
Unit tests for request head parsing, form decoding and the request context.
"""

import asyncio

import pytest

from miniexpress.http.request import (
    HTTPParseError,
    Request,
    RequestHead,
    parse_form,
    parse_head,
)


async def chunks(*parts: bytes):
    """Async body stream yielding the given chunks."""
    for part in parts:
        await asyncio.sleep(0)
        yield part


class TestParseHead:
    """Tests for parse_head()."""

    def test_parse_get(self, sample_get_head):
        head = parse_head(sample_get_head)

        assert head.method == "GET"
        assert head.url == "/data?x=1&y=two"
        assert head.version == "HTTP/1.1"
        assert head.headers["host"] == "localhost:3000"
        assert head.headers["user-agent"] == "pytest"

    def test_header_names_lowercased(self):
        head = parse_head(b"GET / HTTP/1.1\r\nX-Custom-Header: Value\r\n\r\n")

        assert head.headers == {"x-custom-header": "Value"}

    def test_repeated_headers_fold(self):
        head = parse_head(b"GET / HTTP/1.1\r\nAccept: a\r\nAccept: b\r\n\r\n")

        assert head.headers["accept"] == "a, b"

    def test_malformed_header_lines_skipped(self):
        head = parse_head(b"GET / HTTP/1.1\r\nno colon here\r\nHost: x\r\n\r\n")

        assert head.headers == {"host": "x"}

    @pytest.mark.parametrize("line", [
        b"GET /\r\n\r\n",
        b"get / HTTP/1.1\r\n\r\n",
        b"GET  / HTTP/1.1\r\n\r\n",
        b"\r\n\r\n",
        b"GET / FTP/1.1\r\n\r\n",
    ])
    def test_invalid_request_line(self, line):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_head(line)
        assert exc_info.value.status_code == 400

    def test_unsupported_version(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_head(b"GET / HTTP/2.0\r\n\r\n")
        assert exc_info.value.status_code == 505

    def test_content_length(self):
        head = RequestHead("POST", "/", headers={"content-length": "7"})
        assert head.content_length == 7

        assert RequestHead("POST", "/").content_length == 0
        assert RequestHead("POST", "/", headers={"content-length": "x"}).content_length == 0

    def test_is_chunked(self):
        head = RequestHead("POST", "/", headers={"transfer-encoding": "Chunked"})
        assert head.is_chunked
        assert not RequestHead("POST", "/").is_chunked

    def test_keep_alive_rules(self):
        assert RequestHead("GET", "/", "HTTP/1.1").is_keep_alive
        assert not RequestHead("GET", "/", "HTTP/1.1", {"connection": "close"}).is_keep_alive
        assert not RequestHead("GET", "/", "HTTP/1.0").is_keep_alive
        assert RequestHead("GET", "/", "HTTP/1.0", {"connection": "Keep-Alive"}).is_keep_alive


class TestParseForm:
    """Tests for parse_form()."""

    def test_pairs(self):
        assert parse_form("a=1&b=2") == {"a": "1", "b": "2"}

    def test_empty(self):
        assert parse_form("") == {}

    def test_last_write_wins(self):
        assert parse_form("a=1&a=2") == {"a": "2"}

    def test_bare_key(self):
        assert parse_form("flag") == {"flag": ""}

    def test_percent_and_plus_decoding(self):
        assert parse_form("name=John+Doe&city=New%20York") == {
            "name": "John Doe",
            "city": "New York",
        }

    def test_malformed_escape_kept(self):
        assert parse_form("x=%ZZ&y=1") == {"x": "%ZZ", "y": "1"}


class TestRequest:
    """Tests for the Request context."""

    def test_query_available_at_construction(self):
        request = Request("GET", "/data?x=5&y=hello")

        assert request.path == "/data"
        assert request.query_string == "x=5&y=hello"
        assert request.query == {"x": "5", "y": "hello"}

    def test_no_query(self):
        request = Request("GET", "/data")

        assert request.query == {}
        assert request.query_string == ""

    def test_path_not_decoded(self):
        request = Request("GET", "/a%20b/../c")

        assert request.path == "/a%20b/../c"

    def test_empty_path_defaults_to_root(self):
        assert Request("GET", "?x=1").path == "/"

    def test_body_empty_without_stream(self):
        request = Request("GET", "/")

        assert request.body == {}
        assert request.body_loaded

    def test_header_helpers(self):
        request = Request(
            "POST", "/",
            headers={"content-type": "application/x-www-form-urlencoded; charset=utf-8"},
        )

        assert request.content_type == "application/x-www-form-urlencoded"
        assert request.get_header("Content-Type").startswith("application/")
        assert request.get_header("X-Missing", "none") == "none"

    def test_ids_are_unique(self):
        assert Request("GET", "/").id != Request("GET", "/").id

    def test_from_head(self):
        head = parse_head(b"DELETE /data?id=3 HTTP/1.0\r\nHost: x\r\n\r\n")
        request = Request.from_head(head, client_address=("10.0.0.1", 1234))

        assert request.method == "DELETE"
        assert request.path == "/data"
        assert request.query == {"id": "3"}
        assert request.version == "HTTP/1.0"
        assert request.client_address == ("10.0.0.1", 1234)


class TestRequestBody:
    """Tests for the streamed body."""

    def test_body_parsed_when_stream_ends(self):
        async def main():
            request = Request("POST", "/data", stream=chunks(b"a=1", b"&b=2"))
            assert request.body == {}
            body = await request.wait_body()
            return request, body

        request, body = asyncio.run(main())

        assert body == {"a": "1", "b": "2"}
        assert request.body == {"a": "1", "b": "2"}
        assert request.raw_body == b"a=1&b=2"
        assert request.body_loaded

    def test_chunk_boundary_inside_escape(self):
        async def main():
            request = Request("POST", "/", stream=chunks(b"x=caf%C", b"3%A9"))
            return await request.wait_body()

        assert asyncio.run(main()) == {"x": "café"}

    def test_wait_body_is_idempotent(self):
        async def main():
            request = Request("POST", "/", stream=chunks(b"x=5"))
            first = await request.wait_body()
            second = await request.wait_body()
            return first, second

        first, second = asyncio.run(main())
        assert first == second == {"x": "5"}

    def test_wait_body_propagates_stream_error(self):
        async def broken():
            yield b"a=1"
            raise ConnectionError("client went away")

        async def main():
            request = Request("POST", "/", stream=broken())
            with pytest.raises(ConnectionError):
                await request.wait_body()
            return await request.discard_body()

        assert asyncio.run(main()) is False

    def test_discard_after_full_read(self):
        async def main():
            request = Request("POST", "/", stream=chunks(b"a=1"))
            await request.wait_body()
            return await request.discard_body()

        assert asyncio.run(main()) is True

    def test_discard_without_body(self):
        async def main():
            return await Request("GET", "/").discard_body()

        assert asyncio.run(main()) is True

    def test_discard_cancels_pending_reader(self):
        async def stalled():
            yield b"a=1"
            await asyncio.Event().wait()

        async def main():
            request = Request("POST", "/", stream=stalled())
            await asyncio.sleep(0)
            reusable = await request.discard_body()
            return request, reusable

        request, reusable = asyncio.run(main())
        assert reusable is False
        assert request.body == {}
        assert not request.body_loaded

    def test_discard_drains_unread_body(self):
        async def main():
            request = Request("POST", "/", stream=chunks(b"a=1", b"&b=2"))
            reusable = await request.discard_body(timeout=1.0)
            return request, reusable

        request, reusable = asyncio.run(main())
        assert reusable is True
        assert request.body == {"a": "1", "b": "2"}

    def test_discard_gives_up_after_timeout(self):
        async def stalled():
            yield b"a=1"
            await asyncio.Event().wait()

        async def main():
            request = Request("POST", "/", stream=stalled())
            return await request.discard_body(timeout=0.05)

        assert asyncio.run(main()) is False
