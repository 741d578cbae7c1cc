"""
pytest configuration and fixtures.
"""

import asyncio
import threading
from typing import Generator, List
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from miniexpress import MiniExpress, ServerConfig
from miniexpress.handlers import register_demo_routes


class FakeWriter:
    """Stands in for asyncio.StreamWriter; collects everything written."""

    def __init__(self):
        self.chunks: List[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        self.chunks.append(data)

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return ("127.0.0.1", 54321)
        return default

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


@pytest.fixture
def writer() -> FakeWriter:
    """A fresh FakeWriter."""
    return FakeWriter()


@pytest.fixture
def sample_get_head() -> bytes:
    """Sample request head for GET with a query string."""
    return (
        b"GET /data?x=1&y=two HTTP/1.1\r\n"
        b"Host: localhost:3000\r\n"
        b"User-Agent: pytest\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample form POST, head and body."""
    body = b"a=1&b=2"
    head = (
        b"POST /data HTTP/1.1\r\n"
        b"Host: localhost:3000\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    )
    return head + body


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        keep_alive_timeout=2.0,
        log_level="WARNING",
    )


class BackgroundServer:
    """Runs a MiniExpress app on its own event loop in a daemon thread."""

    def __init__(self, app: MiniExpress):
        self.app = app
        self.loop: asyncio.AbstractEventLoop = None
        self.port: int = None
        self._thread: threading.Thread = None
        self._ready = threading.Event()
        self._error: BaseException = None

    def start(self):
        """Start the server and wait until its socket is bound."""
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        if not self._ready.wait(timeout=5.0):
            raise RuntimeError("Server failed to start")
        if self._error is not None:
            raise RuntimeError("Server failed to start") from self._error

    def _run(self):
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_until_complete(self.app.start("127.0.0.1", 0))
            self.port = self.app.port
        except BaseException as e:
            self._error = e
            self._ready.set()
            self.loop.close()
            return

        self._ready.set()
        self.loop.run_forever()
        self.loop.run_until_complete(self.app.close())
        self.loop.close()

    def stop(self):
        """Stop the server."""
        if self.loop is not None and self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def demo_server(config: ServerConfig) -> Generator[BackgroundServer, None, None]:
    """The demo deployment plus a few test routes, on an ephemeral port."""
    app = MiniExpress(config)
    seen: List[str] = []

    @app.use
    async def record(request, response):
        seen.append(f"{request.method} {request.url}")

    register_demo_routes(app)

    @app.get("/boom")
    async def boom(request, response):
        raise RuntimeError("handler exploded")

    @app.get("/sync")
    def sync_handler(request, response):
        response.status(201).send("sync ok")

    server = BackgroundServer(app)
    server.seen = seen
    server.start()

    yield server

    server.stop()
