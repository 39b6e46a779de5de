"""Shared fixtures for the rate limiting tests.

FakeRedis mimics the parts of redis.asyncio used by the transactor:
GET/SET, and pipelines with WATCH / MULTI / EXEC semantics. Every command
yields to the event loop so concurrent tasks interleave the way requests
racing on separate connections do.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional, Set

import pytest
from redis.exceptions import WatchError

from bucketgate.app.core.config import Settings
from bucketgate.app.services.token_bucket import BucketState, TokenBucketTransactor, encode

NOW = datetime(2026, 10, 16, 12, 0, 0, tzinfo=timezone.utc)


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.watched: Dict[str, int] = {}
        self.queue = []
        self.in_multi = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.reset()

    async def reset(self):
        self.watched.clear()
        self.queue.clear()
        self.in_multi = False

    async def watch(self, *keys):
        await self.redis._io("WATCH")
        for key in keys:
            self.watched[key] = self.redis.versions.get(key, 0)

    async def unwatch(self):
        await self.redis._io("UNWATCH")
        self.watched.clear()

    async def get(self, key):
        await self.redis._io("GET")
        return self.redis.data.get(key)

    def multi(self):
        self.redis.commands.append("MULTI")
        self.in_multi = True

    def set(self, key, value, ex=None):
        assert self.in_multi, "SET must be queued inside MULTI"
        self.queue.append((key, value, ex))
        return self

    async def execute(self):
        await self.redis._io("EXEC")
        changed = any(
            self.redis.versions.get(key, 0) != version
            for key, version in self.watched.items()
        )
        if self.redis.force_conflict or changed:
            self.queue.clear()
            self.redis.conflicts += 1
            raise WatchError("Watched variable changed.")
        for key, value, ex in self.queue:
            self.redis._write(key, value, ex)
        results = [True] * len(self.queue)
        self.queue.clear()
        return results


class FakeRedis:
    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.versions: Dict[str, int] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.commands = []
        self.conflicts = 0
        self.force_conflict = False
        self.fail_with: Optional[Exception] = None
        self.fail_on: Optional[Set[str]] = None
        self.delay = 0.0
        self.closed = False

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def _io(self, command: str):
        self.commands.append(command)
        if self.fail_with is not None and (self.fail_on is None or command in self.fail_on):
            raise self.fail_with
        await asyncio.sleep(self.delay)

    def _write(self, key, value, ex=None):
        self.data[key] = value if isinstance(value, bytes) else str(value).encode()
        self.versions[key] = self.versions.get(key, 0) + 1
        self.ttls[key] = ex

    async def get(self, key):
        await self._io("GET")
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        await self._io("SET")
        self._write(key, value, ex)
        return True

    async def ping(self):
        await self._io("PING")
        return True

    async def aclose(self):
        self.closed = True

    def put_state(self, key: str, state: BucketState) -> None:
        self._write(key, encode(state))


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    """Mutable clock; tests move time with ``clock.now = ...``."""
    class _Clock:
        now = NOW

        def __call__(self):
            return self.now

    return _Clock()


@pytest.fixture
def transactor(fake_redis, clock):
    return TokenBucketTransactor(
        fake_redis,
        max_tokens=10,
        refill_rate_per_hour=1,
        max_retries=5,
        timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        redis_url="redis://localhost:6379/15",
        rate_limit_max_tokens=10,
        rate_limit_refill_rate_per_hour=1,
        rate_limit_max_retries=5,
    )
