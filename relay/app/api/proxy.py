"""Proxy routes.

``/`` and ``/index.html`` serve a static status page; every other path, for
every method, names an upstream URL and is forwarded.
"""

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, Response

from relay.app.core.http_client import get_request_http_client
from relay.app.services.proxy_service import ProxyService

router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]


def get_proxy_service(request: Request) -> ProxyService:
    return request.app.state.proxy_service


@router.api_route("/", methods=PROXY_METHODS, response_class=HTMLResponse, include_in_schema=False)
@router.api_route("/index.html", methods=PROXY_METHODS, response_class=HTMLResponse, include_in_schema=False)
async def status_page(request: Request) -> HTMLResponse:
    """Static running-status page; never rate-limited or forwarded."""
    return HTMLResponse(get_proxy_service(request).config.status_page_text)


@router.api_route("/{target:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy(target: str, request: Request) -> Response:
    """Forward the request to ``https://<target>``."""
    service = get_proxy_service(request)
    return await service.handle(request, get_request_http_client(request))
