"""Tests for admission control."""

import asyncio
import json

import pytest

from relay.app.core.config import RateLimitProfile
from relay.app.services.admission import (
    AdmissionController,
    RateLimitRegistry,
    format_quantity,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def body_with(content: str) -> bytes:
    return json.dumps({"messages": [{"role": "user", "content": content}]}).encode()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def profile():
    return RateLimitProfile(name="groq", path_marker="api.groq.com")


@pytest.fixture
def controller(profile, clock):
    return AdmissionController(profile, clock=clock)


class TestRequestCeiling:
    """Requests per window."""

    @pytest.mark.asyncio
    async def test_thirty_first_request_rejected(self, controller):
        for i in range(30):
            result = await controller.admit(body_with("hi"))
            assert result.allowed is True, f"request {i + 1} should be admitted"

        result = await controller.admit(body_with("hi"))
        assert result.allowed is False
        assert result.error.status_code == 429
        assert result.error.error == "rate_limit_exceeded"
        assert result.error.retry_after == 60
        assert result.remaining_requests == 0

    @pytest.mark.asyncio
    async def test_rejection_does_not_mutate_counters(self, controller):
        for _ in range(30):
            await controller.admit(body_with("hello"))
        tokens_before = controller.window.token_count

        await controller.admit(body_with("hello"))

        assert controller.window.request_count == 30
        assert controller.window.token_count == tokens_before


class TestTokenCeiling:
    """Estimated tokens per window."""

    @pytest.mark.asyncio
    async def test_hello_scenario(self, controller):
        result = await controller.admit(b'{"messages":[{"content":"hello"}]}')

        assert result.allowed is True
        assert result.estimated_tokens == 1.25
        assert controller.window.token_count == 1.25
        assert controller.window.request_count == 1
        assert result.remaining_requests == 29
        assert result.remaining_tokens == 5998.75

    @pytest.mark.asyncio
    async def test_exactly_at_ceiling_is_admitted(self, controller):
        result = await controller.admit(body_with("x" * 24000))
        assert result.allowed is True
        assert controller.window.token_count == 6000

    @pytest.mark.asyncio
    async def test_over_ceiling_rejected_and_not_added(self, controller):
        await controller.admit(body_with("x" * 23996))  # 5999 tokens
        assert controller.window.token_count == 5999

        result = await controller.admit(body_with("hello"))  # 1.25 more

        assert result.allowed is False
        assert result.error.error == "token_limit_exceeded"
        assert result.error.retry_after == 60
        assert "6000 tokens" in result.error.message
        assert controller.window.token_count == 5999
        assert controller.window.request_count == 1

    @pytest.mark.asyncio
    async def test_small_request_still_fits_after_rejection(self, controller):
        await controller.admit(body_with("x" * 23996))
        await controller.admit(body_with("hello"))

        result = await controller.admit(body_with("abcd"))  # exactly 1 token
        assert result.allowed is True
        assert controller.window.token_count == 6000


class TestMalformedBodies:
    """Bodies that cannot be estimated are admitted at zero cost."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"", b"not json", b"[1, 2", b'{"messages": 5}'])
    async def test_admitted_with_zero_estimate(self, controller, body):
        result = await controller.admit(body)

        assert result.allowed is True
        assert result.estimated_tokens == 0
        assert controller.window.request_count == 1
        assert controller.window.token_count == 0

    @pytest.mark.asyncio
    async def test_deeply_nested_body_admitted(self, controller):
        body = b"[" * 100000 + b"]" * 100000

        result = await controller.admit(body)

        assert result.allowed is True
        assert result.estimated_tokens == 0
        assert controller.window.request_count == 1

    @pytest.mark.asyncio
    async def test_malformed_body_still_counts_against_request_ceiling(self, profile, clock):
        profile = profile.model_copy(update={"requests_per_window": 2})
        controller = AdmissionController(profile, clock=clock)

        assert (await controller.admit(b"garbage")).allowed is True
        assert (await controller.admit(b"garbage")).allowed is True
        assert (await controller.admit(b"garbage")).allowed is False


class TestWindowReset:
    """Counters reset once the window elapses."""

    @pytest.mark.asyncio
    async def test_reset_before_admission_after_window(self, controller, clock):
        for _ in range(30):
            await controller.admit(body_with("hello"))
        assert (await controller.admit(body_with("hello"))).allowed is False

        clock.advance(60)
        result = await controller.admit(body_with("hello"))

        assert result.allowed is True
        assert controller.window.request_count == 1
        assert controller.window.token_count == 1.25
        assert controller.window.window_start == clock.now

    @pytest.mark.asyncio
    async def test_no_reset_just_before_window_end(self, controller, clock):
        for _ in range(30):
            await controller.admit(b"")

        clock.advance(59.9)
        assert (await controller.admit(b"")).allowed is False


class TestConcurrency:
    """Check-and-commit is atomic per request."""

    @pytest.mark.asyncio
    async def test_only_one_admitted_for_last_request_slot(self, profile, clock):
        profile = profile.model_copy(update={"requests_per_window": 5})
        controller = AdmissionController(profile, clock=clock)
        for _ in range(4):
            await controller.admit(b"")

        results = await asyncio.gather(*(controller.admit(b"") for _ in range(20)))

        assert sum(1 for r in results if r.allowed) == 1
        assert controller.window.request_count == 5

    @pytest.mark.asyncio
    async def test_only_one_admitted_for_last_token_slot(self, profile, clock):
        profile = profile.model_copy(update={"tokens_per_window": 10})
        controller = AdmissionController(profile, clock=clock)
        await controller.admit(body_with("x" * 36))  # 9 tokens

        results = await asyncio.gather(
            *(controller.admit(body_with("abcd")) for _ in range(10))
        )

        assert sum(1 for r in results if r.allowed) == 1
        assert controller.window.token_count == 10


class TestRateLimitRegistry:
    """Profile selection by path marker."""

    def test_controller_for_matching_path(self, clock):
        registry = RateLimitRegistry(
            [
                RateLimitProfile(name="groq", path_marker="api.groq.com"),
                RateLimitProfile(name="other", path_marker="api.example.org"),
            ],
            clock=clock,
        )

        assert registry.controller_for("/api.groq.com/openai/v1/models").profile.name == "groq"
        assert registry.controller_for("/api.example.org/v1").profile.name == "other"
        assert registry.controller_for("/api.openai.com/v1/models") is None

    def test_profiles_have_independent_windows(self, clock):
        registry = RateLimitRegistry(
            [
                RateLimitProfile(name="a", path_marker="a.example"),
                RateLimitProfile(name="b", path_marker="b.example"),
            ],
            clock=clock,
        )
        a = registry.controller_for("/a.example/x")
        b = registry.controller_for("/b.example/x")
        assert a.window is not b.window


@pytest.mark.parametrize(
    ("value", "expected"),
    [(6000, "6000"), (6000.0, "6000"), (5998.75, "5998.75"), (0.0, "0")],
)
def test_format_quantity(value, expected):
    assert format_quantity(value) == expected
