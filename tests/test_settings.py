import pytest
from pydantic import ValidationError

from bucketgate.app.core.config import Settings


def test_defaults(monkeypatch) -> None:
    """Defaults match the documented values."""
    for name in ("REDIS_URL", "REDIS_HOST", "RATE_LIMIT_MAX_TOKENS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.rate_limit_max_tokens == 10
    assert settings.rate_limit_refill_rate_per_hour == 1
    assert 3 <= settings.rate_limit_max_retries <= 5
    assert settings.rate_limit_fail_closed is True
    assert settings.rate_limit_exempt_paths == ["/health"]
    assert settings.bucket_ttl is None
    assert settings.redis_url == "redis://localhost:6379/0"


def test_redis_host_alias(monkeypatch) -> None:
    """REDIS_HOST is accepted for the Redis URL."""
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setenv("REDIS_HOST", "redis://redis:6379")

    assert Settings(_env_file=None).redis_url == "redis://redis:6379"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('["/health", "/metrics"]', ["/health", "/metrics"]),
        ("/health,/ready", ["/health", "/ready"]),
        ("", []),
    ],
)
def test_exempt_paths_parsing(monkeypatch, raw: str, expected: list[str]) -> None:
    """Exempt paths parse from JSON or comma lists."""
    monkeypatch.setenv("RATE_LIMIT_EXEMPT_PATHS", raw)
    assert Settings(_env_file=None).rate_limit_exempt_paths == expected


@pytest.mark.parametrize(
    "overrides",
    [
        {"rate_limit_max_tokens": 0},
        {"rate_limit_refill_rate_per_hour": -1},
        {"rate_limit_max_retries": 0},
        {"rate_limit_max_retries": 11},
        {"store_timeout_seconds": 0},
        {"log_format": "xml"},
        {"bucket_ttl_seconds": -5},
        {"bucket_ttl_seconds": 3600},
    ],
)
def test_invalid_values_rejected_at_startup(overrides) -> None:
    """Invalid values fail validation at startup."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_ttl_long_enough_for_full_refill() -> None:
    """A TTL covering a full refill is accepted."""
    settings = Settings(_env_file=None, bucket_ttl_seconds=10 * 3600)
    assert settings.bucket_ttl == 36000
