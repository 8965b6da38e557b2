"""Outbound leg of the proxy.

The proxy is addressed by embedding the real destination in its own path:
``/api.groq.com/openai/v1/models`` is forwarded to
``https://api.groq.com/openai/v1/models``. Only an allow-list of request
headers is sent upstream.
"""

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple
import httpx

from relay.app.core.logging import get_logger, get_log_context
from relay.app.exceptions import UpstreamUnreachableError

logger = get_logger(__name__)

DEFAULT_FORWARD_HEADERS = frozenset(("accept", "content-type", "authorization"))

# Never copied from the upstream response: connection-level headers, and the
# encoding/length of a body that httpx has already decoded
EXCLUDED_RESPONSE_HEADERS = frozenset((
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "content-encoding",
    "content-length",
))

BODYLESS_METHODS = frozenset(("GET", "HEAD"))


def build_target_url(path: str, query: str = "", scheme: str = "https") -> str:
    """Map an inbound path to the upstream URL it names."""
    url = f"{scheme}://{path.lstrip('/')}"
    if query:
        url = f"{url}?{query}"
    return url


def target_host(url: str) -> str:
    """Host part of an upstream URL, for logs."""
    remainder = url.split("://", 1)[-1]
    return remainder.split("/", 1)[0].split("?", 1)[0]


def filter_request_headers(
    headers: Iterable[Tuple[str, str]],
    allowed: Iterable[str] = DEFAULT_FORWARD_HEADERS,
) -> dict:
    """Keep only headers whose lowercase name is in ``allowed``."""
    allowed = {name.lower() for name in allowed}
    return {key: value for key, value in headers if key.lower() in allowed}


def relay_response_headers(headers: httpx.Headers) -> List[Tuple[str, str]]:
    """Upstream response headers that are safe to hand back to the caller."""
    return [
        (key, value)
        for key, value in headers.multi_items()
        if key.lower() not in EXCLUDED_RESPONSE_HEADERS
    ]


@dataclass
class ForwardResult:
    """Either an open upstream response or the reason there is none.

    The response is opened in streaming mode; whoever consumes it must
    close it.
    """
    url: str
    response: Optional[httpx.Response] = None
    error: Optional[UpstreamUnreachableError] = None


class Forwarder:
    """Issues the outbound call for a proxied request."""

    def __init__(
        self,
        scheme: str = "https",
        allowed_headers: Iterable[str] = DEFAULT_FORWARD_HEADERS,
    ):
        self.scheme = scheme
        self.allowed_headers = frozenset(name.lower() for name in allowed_headers)

    async def forward(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        query: str,
        headers: Mapping[str, str] | Iterable[Tuple[str, str]],
        body: bytes,
        request_id: Optional[str] = None,
    ) -> ForwardResult:
        """Send the request upstream without following redirects.

        Transport failures (DNS, connect, timeouts, malformed target) come
        back as an UpstreamUnreachableError in the result, never raised.
        """
        url = build_target_url(path, query, self.scheme)
        if isinstance(headers, Mapping):
            headers = headers.items()
        outbound_headers = filter_request_headers(headers, self.allowed_headers)
        content = None if method.upper() in BODYLESS_METHODS or not body else body

        try:
            request = client.build_request(
                method,
                url,
                headers=outbound_headers,
                content=content,
            )
            response = await client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(
                f"Failed to fetch {url}: {type(e).__name__}: {e}",
                extra=get_log_context(request_id=request_id, upstream=target_host(url)),
            )
            return ForwardResult(
                url=url,
                error=UpstreamUnreachableError(detail=f"{type(e).__name__}: {e}"),
            )

        return ForwardResult(url=url, response=response)
