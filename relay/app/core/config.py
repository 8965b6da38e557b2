from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class RateLimitProfile(BaseModel):
    """Per-minute budget applied to one upstream host.

    A request is subject to the profile when its path contains ``path_marker``.
    """

    name: str
    path_marker: str
    requests_per_window: int = 30
    tokens_per_window: float = 6000
    window_seconds: float = 60.0
    retry_after_seconds: int = 60

    @field_validator("path_marker")
    @classmethod
    def validate_marker(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("path_marker must not be empty")
        return v

    @field_validator("requests_per_window", "tokens_per_window", "window_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Rate limit ceilings and window must be positive")
        return v


DEFAULT_PROFILES = [
    RateLimitProfile(name="groq", path_marker="api.groq.com"),
]


def _parse_header_names(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [str(v).strip().lower() for v in raw if str(v).strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Listener
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Upstream addressing: https://<path-without-leading-slash>
    upstream_scheme: str = "https"

    # Request headers copied onto the outbound call (lowercase)
    forward_headers: Annotated[list[str], NoDecode] = [
        "accept",
        "content-type",
        "authorization",
    ]

    @field_validator("forward_headers", mode="before")
    @classmethod
    def decode_forward_headers(cls, v: Any) -> list[str]:
        return _parse_header_names(v)

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 120.0  # Slow completions need a long read window
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Rate limiting (JSON list in RATE_LIMIT_PROFILES)
    rate_limit_profiles: list[RateLimitProfile] = Field(
        default_factory=lambda: list(DEFAULT_PROFILES)
    )

    # Token estimation: characters * ratio
    token_estimate_ratio: float = 0.25

    # Response post-processing
    reasoning_start_marker: str = "<think>"
    reasoning_end_marker: str = "</think>"

    # Root status page
    status_page_text: str = "Proxy is Running！"

    # CORS preflight answer
    cors_allow_origin: str = "*"
    cors_allow_methods: str = "GET, POST, OPTIONS"
    cors_allow_headers: str = "Content-Type, Authorization"
    cors_max_age: int = 86400

    @field_validator("upstream_scheme")
    @classmethod
    def validate_scheme(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("http", "https"):
            raise ValueError("upstream_scheme must be http or https")
        return v

    @field_validator(
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("token_estimate_ratio")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        if v < 0:
            raise ValueError("token_estimate_ratio must not be negative")
        return v

    @field_validator("reasoning_start_marker", "reasoning_end_marker")
    @classmethod
    def validate_marker(cls, v: str) -> str:
        if not v:
            raise ValueError("Reasoning markers must not be empty")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
