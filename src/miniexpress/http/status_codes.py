"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The status codes MiniExpress emits, with their reason phrases.

=============================================================================
WHERE EACH CODE COMES FROM
=============================================================================

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  200   │ Default status of every terminal write (send/json/end)   │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  400   │ Request line or headers could not be parsed              │
    │  404   │ No route registered for (method, path)                   │
    │  413   │ Body larger than ServerConfig.max_body_size              │
    │  431   │ Header block larger than ServerConfig.max_header_size    │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  500   │ A middleware or route handler raised                     │
    │  501   │ Transfer-Encoding the body stream cannot decode          │
    │  505   │ Anything other than HTTP/1.0 or HTTP/1.1                 │
    └────────┴───────────────────────────────────────────────────────────┘

Handlers are free to call response.status() with any other integer; the
phrase falls back to "Unknown" for codes not listed here.

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes and reason phrases.

    IntEnum, so members compare equal to plain integers:

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    # 2xx SUCCESS
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    NO_CONTENT = 204

    # 3xx REDIRECTION
    MOVED_PERMANENTLY = 301
    FOUND = 302
    NOT_MODIFIED = 304

    # 4xx CLIENT ERROR
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413
    UNPROCESSABLE_ENTITY = 422
    TOO_MANY_REQUESTS = 429
    REQUEST_HEADER_FIELDS_TOO_LARGE = 431

    # 5xx SERVER ERROR
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    SERVICE_UNAVAILABLE = 503
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase used in the status line."""
        return _STATUS_PHRASES[self]

    @property
    def is_error(self) -> bool:
        """True for 4xx and 5xx codes."""
        return self >= 400


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.CREATED: "Created",
    HTTPStatus.ACCEPTED: "Accepted",
    HTTPStatus.NO_CONTENT: "No Content",
    HTTPStatus.MOVED_PERMANENTLY: "Moved Permanently",
    HTTPStatus.FOUND: "Found",
    HTTPStatus.NOT_MODIFIED: "Not Modified",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.UNAUTHORIZED: "Unauthorized",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.UNPROCESSABLE_ENTITY: "Unprocessable Entity",
    HTTPStatus.TOO_MANY_REQUESTS: "Too Many Requests",
    HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE: "Request Header Fields Too Large",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.NOT_IMPLEMENTED: "Not Implemented",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}


def reason_phrase(code: int) -> str:
    """
    Get the reason phrase for any integer status code.

    Handlers may set codes this module doesn't enumerate
    (e.g. response.status(418)); those get a generic phrase.
    """
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return "Unknown"
