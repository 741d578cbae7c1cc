"""
=============================================================================
DEMO ROUTES
=============================================================================

The reference deployment: four routes that exercise plain-text and JSON
responses and form body parsing.

    GET    /       200 text/plain        "Welcome to Mini Express!"
    POST   /data   200 application/json  the parsed form body
    PUT    /data   200 application/json  {"message":"Data updated","data":{...}}
    DELETE /data   200 text/plain        "Data deleted"

Try it:

    python -m miniexpress
    curl -X POST -d 'a=1&b=2' http://127.0.0.1:3000/data
    {"a":"1","b":"2"}

=============================================================================
"""

from ..http.request import Request
from ..http.response import Response


async def home(request: Request, response: Response) -> None:
    response.send("Welcome to Mini Express!")


async def create_data(request: Request, response: Response) -> None:
    response.json(request.body)


async def update_data(request: Request, response: Response) -> None:
    response.json({"message": "Data updated", "data": request.body})


async def delete_data(request: Request, response: Response) -> None:
    response.send("Data deleted")


def register_demo_routes(app) -> None:
    """Register the demo routes on a MiniExpress app (or a RouteTable)."""
    app.add_route("GET", "/", home)
    app.add_route("POST", "/data", create_data)
    app.add_route("PUT", "/data", update_data)
    app.add_route("DELETE", "/data", delete_data)
