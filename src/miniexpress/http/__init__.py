"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

The request and response contexts, the route table, and the status codes.

    request.py       RequestHead, parse_head(), parse_form(), Request
    response.py      Response, ResponseAlreadySent
    router.py        RouteTable, Handler, invoke_handler()
    status_codes.py  HTTPStatus

Nothing in this package touches sockets. The transport in
miniexpress.core feeds it parsed heads and body streams and flushes
whatever the Response writes.

=============================================================================
"""

from .status_codes import HTTPStatus, reason_phrase
from .request import (
    HTTPParseError,
    Request,
    RequestHead,
    parse_form,
    parse_head,
)
from .response import Response, ResponseAlreadySent, format_http_date
from .router import Handler, RouteTable, invoke_handler

__all__ = [
    # Status codes
    "HTTPStatus",
    "reason_phrase",

    # Request
    "HTTPParseError",
    "Request",
    "RequestHead",
    "parse_form",
    "parse_head",

    # Response
    "Response",
    "ResponseAlreadySent",
    "format_http_date",

    # Routing
    "Handler",
    "RouteTable",
    "invoke_handler",
]
