"""
=============================================================================
MINIEXPRESS APPLICATION
=============================================================================

The MiniExpress class ties the pieces together: it owns the route table,
the middleware chain and the dispatcher, and runs the asyncio server that
feeds them.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           MiniExpress                                │
    │                                                                      │
    │   ┌──────────────────────────────────────────────────────────────┐  │
    │   │  asyncio.start_server                                         │  │
    │   │  one task per client socket → Connection.serve()              │  │
    │   └───────────────────────────────┬──────────────────────────────┘  │
    │                                   │ RequestHead + body stream        │
    │                                   ▼                                  │
    │   ┌──────────────────────────────────────────────────────────────┐  │
    │   │  Dispatcher                                                   │  │
    │   │                                                               │  │
    │   │   MiddlewareChain ──► RouteTable.resolve ──► route handler    │  │
    │   │   (app.use)            (app.add_route)                        │  │
    │   └───────────────────────────────┬──────────────────────────────┘  │
    │                                   │ Response.send / json / end       │
    │                                   ▼                                  │
    │                            StreamWriter                              │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    app = MiniExpress()
    app.use(...)              ┐  registration phase
    app.add_route(...)        ┘  (RuntimeError once serving)

    app.listen(3000)          blocking: logging setup, bind, banner,
                              serve until Ctrl+C, then close()

    await app.serve()         the same inside an existing event loop
    await app.start()         bind only; caller drives the loop
    await app.close()         stop accepting, cancel open connections

=============================================================================
CONCURRENCY MODEL
=============================================================================

Everything runs on one event loop. Each connection is a task; requests on
different connections interleave at await points (middleware, body
reads, handlers, flushing). Handlers are never run on threads, so a
handler that blocks the loop stalls every connection.

=============================================================================
"""

import asyncio
import logging
from typing import Callable, Optional, Set

from .config import ServerConfig
from .core.connection import Connection
from .dispatcher import Dispatcher
from .http.router import Handler, RouteTable
from .middleware.base import MiddlewareChain


logger = logging.getLogger(__name__)


class MiniExpress:
    """
    A minimal HTTP application.

    =========================================================================
    USAGE
    =========================================================================

        app = MiniExpress()

        @app.use
        async def log_request(request, response):
            print(request.method, request.url)

        @app.get("/")
        async def home(request, response):
            response.send("Welcome to Mini Express!")

        async def create(request, response):
            response.json(request.body)

        app.add_route("POST", "/data", create)

        app.listen(3000)

    Handlers may be plain functions or coroutines; both take
    (request, response).

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        """
        Args:
            config: Server configuration. Defaults are used if omitted.

        Raises:
            ValueError: If the configuration is invalid.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self.routes = RouteTable()
        self.middleware = MiddlewareChain()
        self.dispatcher = Dispatcher(self.routes, self.middleware)

        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[asyncio.Task] = set()
        self._show_banner = False

    @property
    def serving(self) -> bool:
        """True between start() and close()."""
        return self._server is not None

    def _check_registration_open(self) -> None:
        if self.serving:
            raise RuntimeError("Cannot register handlers after the server has started")

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def use(self, handler: Handler) -> Handler:
        """
        Append a middleware handler.

        Middleware runs in registration order, before routing, for every
        request. Returns the handler, so it also works as a decorator.
        """
        self._check_registration_open()
        self.middleware.register(handler)
        return handler

    def add_route(self, method: str, path: str, handler: Handler) -> None:
        """
        Register a route handler for exactly (method, path).

        Registering the same pair again replaces the earlier handler.
        """
        self._check_registration_open()
        self.routes.add_route(method, path, handler)

    def route(self, method: str, path: str) -> Callable[[Handler], Handler]:
        """Decorator form of add_route()."""
        def decorator(handler: Handler) -> Handler:
            self.add_route(method, path, handler)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        """Register a GET route."""
        return self.route("GET", path)

    def post(self, path: str) -> Callable[[Handler], Handler]:
        """Register a POST route."""
        return self.route("POST", path)

    def put(self, path: str) -> Callable[[Handler], Handler]:
        """Register a PUT route."""
        return self.route("PUT", path)

    def delete(self, path: str) -> Callable[[Handler], Handler]:
        """Register a DELETE route."""
        return self.route("DELETE", path)

    def patch(self, path: str) -> Callable[[Handler], Handler]:
        """Register a PATCH route."""
        return self.route("PATCH", path)

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def listen(self, port: Optional[int] = None, host: Optional[str] = None) -> None:
        """
        Start the server and block until it is stopped (Ctrl+C).

        Args:
            port: Override config port.
            host: Override config host.
        """
        self._setup_logging()
        self._show_banner = True
        try:
            asyncio.run(self.serve(host=host, port=port))
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        logger.info("Server stopped")

    async def serve(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Start the server and serve until cancelled, then close it."""
        server = await self.start(host=host, port=port)
        try:
            await server.serve_forever()
        finally:
            await self.close()

    async def start(
        self, host: Optional[str] = None, port: Optional[int] = None
    ) -> asyncio.AbstractServer:
        """
        Bind the listening socket and start accepting connections.

        Returns once the socket is bound. With port 0 the OS picks a free
        port, available afterwards as `app.port`.

        Raises:
            RuntimeError: If the server is already running.
            OSError: If the address can't be bound.
        """
        if self.serving:
            raise RuntimeError("Server is already running")

        host = host if host is not None else self.config.host
        port = port if port is not None else self.config.port

        self._server = await asyncio.start_server(
            self.handle_connection,
            host=host,
            port=port,
            backlog=self.config.backlog,
            limit=self.config.max_header_size,
        )
        self.port = self._server.sockets[0].getsockname()[1]

        if self._show_banner:
            self._print_startup_banner(host)
        logger.info(f"Server is listening on port {self.port}")
        return self._server

    async def close(self) -> None:
        """
        Stop accepting connections and cancel the open ones.

        Idle kept-alive connections would otherwise hold the server open
        until their timeout expires. Safe to call more than once.
        """
        server = self._server
        if server is None:
            return

        logger.info("Shutting down server...")
        server.close()
        tasks = list(self._connections)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await server.wait_closed()
        self._server = None

    async def handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """start_server callback: serve one client socket to completion."""
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            await Connection(reader, writer, self.dispatcher, self.config).serve()
        finally:
            if task is not None:
                self._connections.discard(task)

    # =========================================================================
    # STARTUP OUTPUT
    # =========================================================================

    def _setup_logging(self) -> None:
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("miniexpress").setLevel(level)

    def _print_startup_banner(self, host: str) -> None:
        print()
        print("=" * 60)
        print(f"  {self.config.server_name} running")
        print(f"  http://{host}:{self.port}")
        print(f"  Middleware: {len(self.middleware)}  Routes: {len(self.routes)}")
        print("  Press Ctrl+C to stop")
        print("=" * 60)

        self.routes.print_routes()


def create_app(config: Optional[ServerConfig] = None) -> MiniExpress:
    """
    Create a MiniExpress application.

    Example:
        app = create_app(ServerConfig(port=8000))

        @app.get("/")
        def index(request, response):
            response.send("Hello!")

        app.listen()
    """
    return MiniExpress(config)
