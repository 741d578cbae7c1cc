"""
=============================================================================
MIDDLEWARE CHAIN
=============================================================================

An ordered list of handlers run, one after another, for every request
before routing.

=============================================================================
SEQUENTIAL, NOT NESTED
=============================================================================

Each middleware runs to completion before the next one starts. There is
no `next()` to call and no "after" phase: a middleware either lets the
request through by returning, or answers it by writing a response.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  MIDDLEWARE CHAIN - REQUEST FLOW                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ┌──────────┐      ┌──────────┐      ┌──────────┐                  │
    │   │   MW 1   │─────►│   MW 2   │─────►│   MW 3   │─────► ROUTING    │
    │   └────┬─────┘      └────┬─────┘      └──────────┘                  │
    │        │                 │                                           │
    │   finished?         finished? ── yes ──► STOP                        │
    │     no                                  (MW 3 and the route          │
    │                                          handler never run)          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

After every handler the chain checks `response.finished`. The first
middleware that finishes the response ends the chain.

=============================================================================
ERRORS
=============================================================================

The chain does not catch anything. A middleware that raises stops the
chain and the exception reaches the dispatcher, which owns the failure
boundary for the whole request.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Iterator, List
import logging

from ..http.request import Request
from ..http.response import Response
from ..http.router import Handler, invoke_handler


logger = logging.getLogger(__name__)


class Middleware(ABC):
    """
    Base class for class-based middleware.

    Any callable taking (request, response) can be registered; subclassing
    just gives the middleware a name for logging and a place for
    configuration.

        class RequireApiKey(Middleware):
            def __init__(self, key):
                self.key = key

            async def __call__(self, request, response):
                if request.get_header("x-api-key") != self.key:
                    response.status(401).send("Unauthorized")
    """

    @abstractmethod
    async def __call__(self, request: Request, response: Response) -> None:
        """Inspect the request; optionally finish the response."""

    @property
    def name(self) -> str:
        return self.__class__.__name__


def handler_name(handler: Handler) -> str:
    """Readable name of a middleware for log messages."""
    name = getattr(handler, "name", None)
    if isinstance(name, str):
        return name
    return getattr(handler, "__name__", type(handler).__name__)


class MiddlewareChain:
    """
    Ordered middleware registry.

    =========================================================================
    USAGE
    =========================================================================

        chain = MiddlewareChain()
        chain.register(log_request)      # runs first
        chain.register(RequireApiKey())  # runs second

        await chain.run(request, response)
        if response.finished:
            ...                          # somebody answered already

    =========================================================================
    """

    def __init__(self):
        self._handlers: List[Handler] = []

    def register(self, handler: Handler) -> "MiddlewareChain":
        """
        Append a handler. Registration order is execution order.

        Returns:
            Self for chaining: chain.register(a).register(b)
        """
        self._handlers.append(handler)
        logger.debug(f"Added middleware: {handler_name(handler)}")
        return self

    use = register

    async def run(self, request: Request, response: Response) -> None:
        """
        Run every handler in order, stopping once the response finishes.

        Each handler is awaited before the next begins. Exceptions
        propagate unchanged.
        """
        for handler in self._handlers:
            await invoke_handler(handler, request, response)
            if response.finished:
                logger.debug(
                    f"[{request.id}] Short-circuited by {handler_name(handler)}"
                )
                return

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[Handler]:
        return iter(self._handlers)
