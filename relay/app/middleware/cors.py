"""CORS preflight and response policy headers.

Any OPTIONS request is answered here, before routing, whatever its path:
the proxy has no routes of its own to negotiate. Every other response gets
the proxy's policy headers.
"""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from relay.app.exceptions import utc_timestamp


class ProxyCORSMiddleware(BaseHTTPMiddleware):
    """Answers preflight requests and stamps policy headers on responses."""

    def __init__(
        self,
        app,
        allow_origin: str = "*",
        allow_methods: str = "GET, POST, OPTIONS",
        allow_headers: str = "Content-Type, Authorization",
        max_age: int = 86400,
    ):
        super().__init__(app)
        self.allow_origin = allow_origin
        self.preflight_headers = {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Methods": allow_methods,
            "Access-Control-Allow-Headers": allow_headers,
            "Access-Control-Max-Age": str(max_age),
        }

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=self.preflight_headers)

        response = await call_next(request)

        response.headers["Access-Control-Allow-Origin"] = self.allow_origin
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["X-Proxy-Date"] = utc_timestamp()
        return response
