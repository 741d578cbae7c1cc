"""
=============================================================================
MINIEXPRESS - A Minimal HTTP Request-Dispatch Engine
=============================================================================

Accepts HTTP connections, runs every request through an ordered chain of
middleware, then hands it to the handler registered for its exact method
and path.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    miniexpress/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m miniexpress)
    ├── server.py            # MiniExpress application class
    ├── dispatcher.py        # Middleware → routing → handler, 404/500
    ├── config.py            # ServerConfig dataclass
    ├── core/
    │   └── connection.py    # asyncio connection loop, body streams
    ├── http/
    │   ├── request.py       # Head parsing, form decoding, Request
    │   ├── response.py      # Response and its terminal writes
    │   ├── router.py        # Exact-match route table
    │   └── status_codes.py  # HTTP status enum
    ├── middleware/
    │   ├── base.py          # Middleware base class, MiddlewareChain
    │   └── logging.py       # Access logging
    └── handlers/
        └── demo.py          # Reference deployment

=============================================================================
QUICK START
=============================================================================

    from miniexpress import MiniExpress

    app = MiniExpress()

    @app.use
    async def log_request(request, response):
        print(request.method, request.url)

    @app.get("/")
    async def home(request, response):
        response.send("Welcome to Mini Express!")

    @app.post("/data")
    async def create(request, response):
        response.json(request.body)

    app.listen(3000)

=============================================================================
"""

from .config import ServerConfig
from .dispatcher import DispatchState, Dispatcher
from .http.request import HTTPParseError, Request
from .http.response import Response, ResponseAlreadySent
from .http.router import RouteTable
from .http.status_codes import HTTPStatus
from .middleware import LoggingMiddleware, Middleware, MiddlewareChain
from .server import MiniExpress, create_app

__version__ = "1.0.0"

__all__ = [
    "MiniExpress",
    "create_app",
    "ServerConfig",
    "Dispatcher",
    "DispatchState",
    "Request",
    "Response",
    "ResponseAlreadySent",
    "HTTPParseError",
    "HTTPStatus",
    "RouteTable",
    "Middleware",
    "MiddlewareChain",
    "LoggingMiddleware",
    "__version__",
]
