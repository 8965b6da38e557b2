from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from relay.app.api.proxy import router as proxy_router
from relay.app.core.config import Settings, settings as default_settings
from relay.app.core.http_client import init_http_client
from relay.app.core.logging import get_logger, setup_logging
from relay.app.exceptions import ProxyError, utc_timestamp
from relay.app.middleware.cors import ProxyCORSMiddleware
from relay.app.middleware.request_id import RequestIdMiddleware, get_request_id
from relay.app.services.proxy_service import ProxyService, error_response
from relay.app.services.token_estimator import TokenEstimator


def create_app(
    config: Optional[Settings] = None,
    estimator: Optional[TokenEstimator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings to use (the environment-loaded settings by default)
        estimator: Token estimation strategy for rate-limited upstreams

    Returns:
        Configured FastAPI application instance
    """
    config = config or default_settings

    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Opens the pooled outbound HTTP client on startup and closes it on
        shutdown. Rate-limit counters live on app.state and are not
        persisted.
        """
        async with init_http_client(config) as http_client:
            logger.info(
                "Application startup complete",
                extra={
                    "rate_limited_upstreams": [
                        p.path_marker for p in config.rate_limit_profiles
                    ],
                    "debug_mode": config.debug,
                },
            )
            yield {"http_client": http_client}

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Throttle Proxy",
        description="Path-addressed forwarding proxy with a per-minute upstream request and token budget",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.proxy_service = ProxyService(config, estimator=estimator)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestIdMiddleware)

    # CORS (outermost - answers preflight before anything else runs)
    app.add_middleware(
        ProxyCORSMiddleware,
        allow_origin=config.cors_allow_origin,
        allow_methods=config.cors_allow_methods,
        allow_headers=config.cors_allow_headers,
        max_age=config.cors_max_age,
    )

    app.include_router(proxy_router)

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
        """Map any raised ProxyError to its status and body."""
        return error_response(exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback; debug mode adds the exception message.
        """
        request_id = get_request_id(request)

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        content = {
            "error": "internal_error",
            "message": str(exc) if config.debug else "Internal server error",
            "timestamp": utc_timestamp(),
        }
        if config.debug:
            content["exception_type"] = type(exc).__name__
        return JSONResponse(
            status_code=500,
            content=content,
            headers={
                "Access-Control-Allow-Origin": config.cors_allow_origin,
                "Referrer-Policy": "no-referrer",
            },
        )

    return app


# Create the application instance
app = create_app()


def run() -> None:
    """Console entry point: serve the proxy with uvicorn."""
    uvicorn.run(
        "relay.app.main:app",
        host=default_settings.host,
        port=default_settings.port,
        log_config=None,
    )
