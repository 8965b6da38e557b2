"""Core utilities for the proxy application."""

from relay.app.core.config import RateLimitProfile, Settings, settings
from relay.app.core.http_client import create_http_client, init_http_client
from relay.app.core.logging import get_logger, setup_logging

__all__ = [
    "RateLimitProfile",
    "Settings",
    "settings",
    "create_http_client",
    "init_http_client",
    "get_logger",
    "setup_logging",
]
