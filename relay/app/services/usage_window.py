"""Rolling usage window for one rate-limited upstream."""

import time
from dataclasses import dataclass, field


@dataclass
class UsageWindow:
    """Request and estimated-token counters for the current window.

    Both counters are only ever reset together, and ``window_start`` only
    moves forward. Callers serialize access (see AdmissionController).
    """
    window_seconds: float = 60.0
    request_count: int = 0
    token_count: float = 0.0
    window_start: float = field(default_factory=time.monotonic)

    def is_expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_seconds

    def reset_if_window_expired(self, now: float) -> bool:
        """Start a new window if the current one has run its full length.

        Returns:
            True if the counters were reset
        """
        if not self.is_expired(now):
            return False
        self.request_count = 0
        self.token_count = 0.0
        self.window_start = max(self.window_start, now)
        return True

    def commit(self, tokens: float) -> None:
        self.token_count += tokens
        self.request_count += 1

    def remaining_requests(self, limit: int) -> int:
        return max(0, limit - self.request_count)

    def remaining_tokens(self, limit: float) -> float:
        return max(0.0, limit - self.token_count)

    def seconds_until_reset(self, now: float) -> float:
        return max(0.0, self.window_seconds - (now - self.window_start))
