"""
=============================================================================
DISPATCHER
=============================================================================

Runs one request through the pipeline: middleware, route lookup, route
handler, and the failure boundary around all of it.

=============================================================================
REQUEST STATE MACHINE
=============================================================================

    RECEIVED
       │  contexts built by the connection
       ▼
    MIDDLEWARE_RUNNING
       │
       ├── a middleware finished the response ──► SHORT_CIRCUITED
       │
       ▼
    ROUTING  resolve(method, path)
       │
       ├── no handler ─────────────────────────► NOT_FOUND   404 "Not Found"
       │
       ├── await body, run handler
       │       ├── returned ───────────────────► HANDLED
       │       └── raised ─────────────────────► ERRORED     500
       │
       ▼
     SENT  (implicit: the terminal write already happened)

Every outcome ends with exactly one terminal write, and dispatch()
returns which outcome it was.

=============================================================================
FAILURE BOUNDARY
=============================================================================

One try/except wraps the middleware chain and a second wraps the route
handler. Both log the exception with its traceback and answer

    HTTP/1.1 500 Internal Server Error
    Content-Type: text/plain

    Internal Server Error

Nothing from the exception reaches the client. If the failing code had
already finished the response, the failure is logged and nothing else is
written.

=============================================================================
"""

from enum import Enum
import logging

from .http.request import Request
from .http.response import Response
from .http.router import RouteTable, invoke_handler
from .http.status_codes import HTTPStatus
from .middleware.base import MiddlewareChain


logger = logging.getLogger(__name__)


class DispatchState(Enum):
    """Stages a request passes through; the last four are outcomes."""

    RECEIVED = "received"
    MIDDLEWARE_RUNNING = "middleware_running"
    ROUTING = "routing"
    SHORT_CIRCUITED = "short_circuited"
    HANDLED = "handled"
    NOT_FOUND = "not_found"
    ERRORED = "errored"


class Dispatcher:
    """
    Drives a (request, response) pair through middleware and routing.

    The dispatcher only reads the chain and the route table, so a single
    instance serves every concurrent request.

        dispatcher = Dispatcher(routes, middleware)
        outcome = await dispatcher.dispatch(request, response)
    """

    def __init__(self, routes: RouteTable, middleware: MiddlewareChain):
        self.routes = routes
        self.middleware = middleware

    async def dispatch(self, request: Request, response: Response) -> DispatchState:
        """
        Process one request.

        Never raises for handler failures; they become a 500 response.

        Returns:
            SHORT_CIRCUITED, HANDLED, NOT_FOUND or ERRORED.
        """
        try:
            await self.middleware.run(request, response)
        except Exception:
            logger.exception(f"[{request.id}] Middleware error: {request.method} {request.url}")
            return self._fail(response)

        if response.finished:
            return DispatchState.SHORT_CIRCUITED

        handler = self.routes.resolve(request.method, request.path)
        if handler is None:
            response.status(HTTPStatus.NOT_FOUND).send("Not Found")
            return DispatchState.NOT_FOUND

        logger.debug(f"[{request.id}] Routing to handler: {request.method} {request.path}")
        try:
            await request.wait_body()
            await invoke_handler(handler, request, response)
        except Exception:
            logger.exception(f"[{request.id}] Handler error: {request.method} {request.url}")
            return self._fail(response)

        if not response.finished:
            logger.warning(
                f"[{request.id}] Handler for {request.method} {request.path} "
                f"returned without responding; sending empty response"
            )
            response.end()
        return DispatchState.HANDLED

    def _fail(self, response: Response) -> DispatchState:
        if not response.finished:
            response.status(HTTPStatus.INTERNAL_SERVER_ERROR).send("Internal Server Error")
        return DispatchState.ERRORED
