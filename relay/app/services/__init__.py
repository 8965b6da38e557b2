"""Services package for the proxy.

This package provides:
- Usage windows and admission control for rate-limited upstreams
- Token estimation strategies
- Request forwarding and response post-processing
"""

from relay.app.services.admission import (
    AdmissionController,
    AdmissionResult,
    RateLimitRegistry,
)
from relay.app.services.forwarder import (
    ForwardResult,
    Forwarder,
    build_target_url,
    filter_request_headers,
)
from relay.app.services.post_processor import ReasoningStripper
from relay.app.services.proxy_service import ProxyService
from relay.app.services.token_estimator import (
    CharacterRatioEstimator,
    TokenEstimator,
    estimate_tokens,
)
from relay.app.services.usage_window import UsageWindow

__all__ = [
    "AdmissionController",
    "AdmissionResult",
    "RateLimitRegistry",
    "ForwardResult",
    "Forwarder",
    "build_target_url",
    "filter_request_headers",
    "ReasoningStripper",
    "ProxyService",
    "CharacterRatioEstimator",
    "TokenEstimator",
    "estimate_tokens",
    "UsageWindow",
]
