"""
=============================================================================
ROUTE TABLE
=============================================================================

Maps (HTTP method, exact path) to a handler.

=============================================================================
ROUTING ARCHITECTURE
=============================================================================

Routes live in a two-level dictionary, method first:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ROUTE TABLE                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   _routes = {                                                        │
    │       "GET":    {"/":     home},                                     │
    │       "POST":   {"/data": create_data},                              │
    │       "PUT":    {"/data": update_data},     ◄── resolve("PUT",       │
    │       "DELETE": {"/data": delete_data},              "/data")        │
    │   }                                                                  │
    │                                                                      │
    │   resolve(method, path) = _routes[method][path]   two dict lookups   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Only exact paths are supported, so there is nothing to compile and no
ordering between routes: lookup is O(1) and the result never depends on
registration order, except that registering the same (method, path)
again replaces the earlier handler.

=============================================================================
MATCHING RULES
=============================================================================

    Registered      Request          Match?
    ──────────      ───────          ──────
    GET /data       GET /data        yes
    GET /data       GET /data/       no   (no trailing-slash folding)
    GET /data       GET /Data        no   (paths are case-sensitive)
    GET /data       POST /data       no   (method is part of the key)
    get /data       GET /data        no   (methods are case-sensitive too)

=============================================================================
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import inspect
import logging

from .request import Request
from .response import Response


logger = logging.getLogger(__name__)


# Handler: (request, response) → None, or a coroutine resolving to None.
# Shared by route handlers and middleware.
Handler = Callable[[Request, Response], Optional[Awaitable[Any]]]


async def invoke_handler(handler: Handler, request: Request, response: Response) -> None:
    """
    Call a handler and wait for it to finish.

    Coroutine functions are awaited; plain functions run inline. Any
    awaitable a plain function returns is awaited as well.
    """
    result = handler(request, response)
    if inspect.isawaitable(result):
        await result


class RouteTable:
    """
    Exact-match route registry.

    =========================================================================
    USAGE
    =========================================================================

        routes = RouteTable()

        # Direct registration
        routes.add_route("GET", "/", home)

        # Decorator registration
        @routes.post("/data")
        async def create_data(request, response):
            response.json(request.body)

        handler = routes.resolve("POST", "/data")   # → create_data
        routes.resolve("GET", "/missing")           # → None

    =========================================================================
    """

    def __init__(self):
        self._routes: Dict[str, Dict[str, Handler]] = {}

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def add_route(self, method: str, path: str, handler: Handler) -> None:
        """
        Register `handler` for exactly (method, path).

        A second registration for the same key replaces the first.

        Args:
            method: HTTP method, stored as given ("GET", not "get").
            path: Exact request path, e.g. "/data".
            handler: Callable taking (request, response).
        """
        by_path = self._routes.setdefault(method, {})
        if path in by_path:
            logger.debug(f"Replacing handler for {method} {path}")
        by_path[path] = handler

    def resolve(self, method: str, path: str) -> Optional[Handler]:
        """
        Look up the handler for (method, path).

        No normalization happens here: both parts must match what was
        registered character for character.

        Returns:
            The handler, or None if nothing is registered for the pair.
        """
        return self._routes.get(method, {}).get(path)

    def allowed_methods(self, path: str) -> List[str]:
        """Methods that have a handler registered for `path`, sorted."""
        return sorted(m for m, by_path in self._routes.items() if path in by_path)

    # =========================================================================
    # DECORATOR-STYLE REGISTRATION
    # =========================================================================
    #
    #     @routes.get("/")
    #     async def home(request, response):
    #         response.send("Welcome to Mini Express!")
    #
    # is the same as routes.add_route("GET", "/", home).
    #
    # =========================================================================

    def route(self, method: str, path: str) -> Callable[[Handler], Handler]:
        """Decorator registering the function for (method, path)."""
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
    # INTROSPECTION
    # =========================================================================

    def routes(self) -> List[Tuple[str, str]]:
        """All registered (method, path) keys, sorted by path then method."""
        keys = [(method, path) for method, by_path in self._routes.items() for path in by_path]
        return sorted(keys, key=lambda key: (key[1], key[0]))

    def __len__(self) -> int:
        return sum(len(by_path) for by_path in self._routes.values())

    def __contains__(self, key: Tuple[str, str]) -> bool:
        method, path = key
        return self.resolve(method, path) is not None

    def print_routes(self) -> None:
        """
        Print the route table, used by the startup banner.

            Registered Routes:
            ------------------------------------------------------------
              GET      /
              DELETE   /data
              POST     /data
            ------------------------------------------------------------
        """
        print("\nRegistered Routes:")
        print("-" * 60)
        for method, path in self.routes():
            print(f"  {method:8} {path}")
        print("-" * 60)
