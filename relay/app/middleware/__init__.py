"""Middleware package for the proxy."""

from relay.app.middleware.cors import ProxyCORSMiddleware
from relay.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "ProxyCORSMiddleware",
    "RequestIdMiddleware",
    "get_request_id",
]
