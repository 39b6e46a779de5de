import math
from typing import Annotated, Any

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_path_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw.startswith("["):
        raw = raw.strip("[]")
    parts = [p.strip().strip("\"'") for p in raw.split(",")]
    return [p for p in parts if p]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    They are read once at startup; nothing here changes per request.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Listen address for `python -m bucketgate.app.main`
    host: str = "0.0.0.0"
    port: int = 3000

    # Redis settings. REDIS_HOST is accepted for older deployments.
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("REDIS_URL", "REDIS_HOST", "redis_url"),
    )
    redis_max_connections: int = 100

    # Token bucket settings
    rate_limit_max_tokens: int = 10
    rate_limit_refill_rate_per_hour: int = 1
    rate_limit_max_retries: int = 5  # Optimistic transaction attempts per request
    rate_limit_key_prefix: str = "bucket"
    rate_limit_fail_closed: bool = True  # If True, deny requests when Redis is unavailable
    rate_limit_expose_headers: bool = False
    rate_limit_exempt_paths: Annotated[list[str], NoDecode] = ["/health"]

    # Bound on one watch/read/commit cycle
    store_timeout_seconds: float = 2.0

    # 0 disables expiry of bucket records
    bucket_ttl_seconds: int = 0

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_exempt_paths", mode="before")
    @classmethod
    def decode_exempt_paths(cls, v: Any) -> list[str]:
        return _parse_path_list(v)

    @field_validator("rate_limit_max_tokens", "rate_limit_refill_rate_per_hour")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("rate_limit_max_retries must be between 1 and 10")
        return v

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("store_timeout_seconds must be positive")
        return v

    @field_validator("redis_max_connections")
    @classmethod
    def validate_pool_size_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("redis_max_connections must be at least 1")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    @model_validator(mode="after")
    def validate_bucket_ttl(self) -> "Settings":
        """A TTL shorter than a full refill would let a drained bucket reset early."""
        if self.bucket_ttl_seconds < 0:
            raise ValueError("bucket_ttl_seconds must not be negative")
        if self.bucket_ttl_seconds:
            refill_hours = math.ceil(
                self.rate_limit_max_tokens / self.rate_limit_refill_rate_per_hour
            )
            if self.bucket_ttl_seconds < refill_hours * 3600:
                raise ValueError(
                    f"bucket_ttl_seconds must be at least {refill_hours * 3600} "
                    f"(time for an empty bucket to refill)"
                )
        return self

    @property
    def bucket_ttl(self) -> int | None:
        return self.bucket_ttl_seconds or None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
