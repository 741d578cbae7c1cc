"""
=============================================================================
MIDDLEWARE
=============================================================================

Middleware is code that runs for every request before route-specific
logic: logging, authentication, request ids, blocking maintenance
windows, and so on.

    app.use(LoggingMiddleware())

    @app.use
    async def maintenance(request, response):
        if MAINTENANCE:
            response.status(503).send("Back soon")

A middleware receives the same (request, response) pair as a route
handler. Finishing the response ends processing for that request.

=============================================================================
"""

from .base import Middleware, MiddlewareChain, handler_name
from .logging import LoggingMiddleware, RequestLog

__all__ = [
    "Middleware",
    "MiddlewareChain",
    "handler_name",
    "LoggingMiddleware",
    "RequestLog",
]
