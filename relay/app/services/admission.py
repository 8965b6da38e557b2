"""Admission control for rate-limited upstreams.

Each configured upstream profile gets one AdmissionController owning a
UsageWindow. The reset check, both ceiling checks and the commit run under
a single asyncio.Lock so that concurrent requests near a boundary cannot
both be admitted. The outbound call never holds the lock.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from relay.app.core.config import RateLimitProfile
from relay.app.core.logging import get_logger, get_log_context
from relay.app.exceptions import AdmissionRejectedError, MalformedRequestBodyError
from relay.app.services.token_estimator import (
    CharacterRatioEstimator,
    TokenEstimator,
    decode_payload,
)
from relay.app.services.usage_window import UsageWindow

logger = get_logger(__name__)


@dataclass
class AdmissionResult:
    """Outcome of an admission check."""
    allowed: bool
    profile: str
    estimated_tokens: float
    remaining_requests: int
    remaining_tokens: float
    error: Optional[AdmissionRejectedError] = None


class AdmissionController:
    """Gates requests to one upstream against its per-window budget."""

    def __init__(
        self,
        profile: RateLimitProfile,
        estimator: Optional[TokenEstimator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the controller.

        Args:
            profile: Ceilings, window length and path marker
            estimator: Token estimation strategy (character ratio by default)
            clock: Monotonic time source in seconds
        """
        self.profile = profile
        self.estimator = estimator or CharacterRatioEstimator()
        self._clock = clock
        self.window = UsageWindow(
            window_seconds=profile.window_seconds,
            window_start=clock(),
        )
        self._lock = asyncio.Lock()

    def matches(self, path: str) -> bool:
        return self.profile.path_marker in path

    def estimate_body(self, body: bytes, request_id: Optional[str] = None) -> float:
        """Estimate the token cost of a buffered request body.

        A body that is not JSON costs 0; the request is still admitted.
        """
        try:
            payload = decode_payload(body)
        except MalformedRequestBodyError as e:
            logger.warning(
                f"Could not parse request body for token estimation: {e.message}",
                extra=get_log_context(request_id=request_id, upstream=self.profile.name),
            )
            return 0
        return self.estimator.estimate(payload)

    async def admit(self, body: bytes, request_id: Optional[str] = None) -> AdmissionResult:
        """Decide whether a request may proceed and commit its cost if so."""
        estimate = self.estimate_body(body, request_id=request_id)

        async with self._lock:
            window = self.window
            window.reset_if_window_expired(self._clock())

            if window.request_count >= self.profile.requests_per_window:
                return self._reject(
                    AdmissionRejectedError(
                        f"Rate limit exceeded. Max {self.profile.requests_per_window} "
                        f"requests per minute.",
                        retry_after=self.profile.retry_after_seconds,
                        error="rate_limit_exceeded",
                    ),
                    estimate,
                    request_id,
                )

            if window.token_count + estimate > self.profile.tokens_per_window:
                return self._reject(
                    AdmissionRejectedError(
                        f"Token limit exceeded. Max {format_quantity(self.profile.tokens_per_window)} "
                        f"tokens per minute.",
                        retry_after=self.profile.retry_after_seconds,
                        error="token_limit_exceeded",
                    ),
                    estimate,
                    request_id,
                )

            window.commit(estimate)
            return AdmissionResult(
                allowed=True,
                profile=self.profile.name,
                estimated_tokens=estimate,
                remaining_requests=window.remaining_requests(self.profile.requests_per_window),
                remaining_tokens=window.remaining_tokens(self.profile.tokens_per_window),
            )

    def _reject(
        self,
        error: AdmissionRejectedError,
        estimate: float,
        request_id: Optional[str],
    ) -> AdmissionResult:
        logger.warning(
            f"Admission rejected: {error.message}",
            extra=get_log_context(
                request_id=request_id,
                upstream=self.profile.name,
                request_count=self.window.request_count,
                token_count=self.window.token_count,
                estimated_tokens=estimate,
                seconds_until_reset=self.window.seconds_until_reset(self._clock()),
            ),
        )
        return AdmissionResult(
            allowed=False,
            profile=self.profile.name,
            estimated_tokens=estimate,
            remaining_requests=self.window.remaining_requests(self.profile.requests_per_window),
            remaining_tokens=self.window.remaining_tokens(self.profile.tokens_per_window),
            error=error,
        )


class RateLimitRegistry:
    """Admission controllers for every configured upstream profile."""

    def __init__(
        self,
        profiles: Iterable[RateLimitProfile],
        estimator: Optional[TokenEstimator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.controllers: List[AdmissionController] = [
            AdmissionController(profile, estimator=estimator, clock=clock)
            for profile in profiles
        ]

    def controller_for(self, path: str) -> Optional[AdmissionController]:
        """First controller whose marker appears in ``path``, if any."""
        for controller in self.controllers:
            if controller.matches(path):
                return controller
        return None


def format_quantity(value: float) -> str:
    """Render integral floats without a decimal part (6000.0 -> "6000")."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)
