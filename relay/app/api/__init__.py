"""API routes for the proxy."""

from relay.app.api.proxy import router

__all__ = ["router"]
