"""Request pipeline: admission, forwarding, post-processing.

One ProxyService is built per application and owns the rate-limit state.
"""

import time
from typing import Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from relay.app.core.config import Settings
from relay.app.core.logging import get_logger, get_log_context
from relay.app.exceptions import ProxyError, UpstreamUnreachableError
from relay.app.middleware.request_id import get_request_id
from relay.app.services.admission import (
    AdmissionResult,
    RateLimitRegistry,
    format_quantity,
)
from relay.app.services.forwarder import (
    Forwarder,
    relay_response_headers,
    target_host,
)
from relay.app.services.post_processor import ReasoningStripper, is_json_content_type
from relay.app.services.token_estimator import CharacterRatioEstimator, TokenEstimator

logger = get_logger(__name__)


def error_response(error: ProxyError) -> JSONResponse:
    """Map a tagged proxy error to its HTTP response."""
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_response(),
        headers=error.response_headers(),
    )


def apply_quota_headers(response: Response, admission: Optional[AdmissionResult]) -> None:
    if admission is None:
        return
    response.headers["X-RateLimit-Remaining"] = str(admission.remaining_requests)
    response.headers["X-TokenLimit-Remaining"] = format_quantity(admission.remaining_tokens)


class ProxyService:
    """Handles every proxyable request for one application instance."""

    def __init__(
        self,
        config: Settings,
        estimator: Optional[TokenEstimator] = None,
        registry: Optional[RateLimitRegistry] = None,
    ):
        self.config = config
        estimator = estimator or CharacterRatioEstimator(config.token_estimate_ratio)
        self.registry = registry or RateLimitRegistry(
            config.rate_limit_profiles, estimator=estimator
        )
        self.forwarder = Forwarder(
            scheme=config.upstream_scheme,
            allowed_headers=config.forward_headers,
        )
        self.stripper = ReasoningStripper(
            config.reasoning_start_marker, config.reasoning_end_marker
        )

    async def handle(self, request: Request, client: httpx.AsyncClient) -> Response:
        """Admit, forward and post-process one inbound request."""
        started = time.perf_counter()
        path = request.url.path
        request_id = get_request_id(request)

        # Buffered once; estimation and forwarding both read these bytes
        body = await request.body()

        admission: Optional[AdmissionResult] = None
        controller = self.registry.controller_for(path)
        if controller is not None:
            admission = await controller.admit(body, request_id=request_id)
            if not admission.allowed:
                response = error_response(admission.error)
                apply_quota_headers(response, admission)
                return response

        result = await self.forwarder.forward(
            client,
            request.method,
            path,
            request.url.query,
            request.headers.items(),
            body,
            request_id=request_id,
        )
        if result.error is not None:
            return error_response(result.error)

        upstream = result.response
        try:
            response = await self._relay(upstream)
        except httpx.HTTPError as e:
            await upstream.aclose()
            logger.error(
                f"Upstream response from {result.url} failed: {type(e).__name__}: {e}",
                extra=get_log_context(request_id=request_id, upstream=target_host(result.url)),
            )
            return error_response(UpstreamUnreachableError(detail=str(e)))

        apply_quota_headers(response, admission)

        logger.info(
            f"{request.method} {result.url} -> {upstream.status_code}",
            extra=get_log_context(
                request_id=request_id,
                upstream=target_host(result.url),
                method=request.method,
                status_code=upstream.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            ),
        )
        return response

    async def _relay(self, upstream: httpx.Response) -> Response:
        """Build the caller-facing response from an open upstream response.

        JSON is buffered so the reasoning block can be stripped; anything
        else is streamed through as it arrives.
        """
        headers = relay_response_headers(upstream.headers)
        content_type = upstream.headers.get("content-type")

        if is_json_content_type(content_type):
            try:
                await upstream.aread()
            finally:
                await upstream.aclose()
            body = self.stripper.process_body(content_type, upstream.content)
            response = Response(content=body, status_code=upstream.status_code)
        else:
            response = StreamingResponse(
                _iter_upstream(upstream),
                status_code=upstream.status_code,
            )

        for key, value in headers:
            response.headers.append(key, value)
        return response


async def _iter_upstream(upstream: httpx.Response):
    try:
        async for chunk in upstream.aiter_bytes():
            yield chunk
    finally:
        await upstream.aclose()
