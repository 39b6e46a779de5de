"""Optimistic read-modify-write of bucket state in Redis.

Redis has no compare-and-swap for a structured record, so every admission
runs a WATCH / GET / MULTI / SET / EXEC cycle on one key. If another
instance commits to the same key between WATCH and EXEC, Redis rejects
the EXEC with WatchError and the whole cycle is retried against the new
state. A bounded number of lost races ends in a denial (fail closed).

Each cycle checks out its own pooled connection through ``pipeline()``,
so transactions of concurrent requests never interleave on one
connection and no in-process lock is needed.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Optional, Tuple

from redis.exceptions import RedisError, WatchError

from bucketgate.app.core.logging import get_log_context, get_logger
from bucketgate.app.exceptions import CorruptStateError, StoreUnavailableError

from . import codec
from .models import AttemptResult, BucketState, Decision, DenialReason, utc_now
from .policy import RefillOutcome, refill, seconds_until_next_token

logger = get_logger(__name__)


def _is_dropped_connection(error: WatchError) -> bool:
    """redis-py raises WatchError, not ConnectionError, when a watched connection drops."""
    return "while watching" in str(error)


class TokenBucketTransactor:
    """Admission decisions for a single bucket key backed by Redis.

    Redis key format:
    - bucket:{sha256(identity)} - JSON bucket record (see codec)
    """

    DEFAULT_MAX_RETRIES = 5
    DEFAULT_TIMEOUT_SECONDS = 2.0

    def __init__(
        self,
        redis_client: Any,
        max_tokens: int = 10,
        refill_rate_per_hour: int = 1,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the transactor.

        Args:
            redis_client: redis.asyncio client (owns the connection pool)
            max_tokens: Bucket capacity
            refill_rate_per_hour: Tokens added per whole elapsed hour
            max_retries: Transaction cycles before giving up on contention
            timeout: Bound in seconds on one watch/read/commit cycle
            ttl_seconds: Optional expiry set on every write
            clock: Source of timezone-aware "now"
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._redis = redis_client
        self.max_tokens = max_tokens
        self.refill_rate_per_hour = refill_rate_per_hour
        self.max_retries = max_retries
        self.timeout = timeout
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def attempt(self, key: str) -> AttemptResult:
        """Try to take one token from the bucket stored at ``key``.

        Returns:
            AttemptResult with ADMITTED (state committed) or DENIED
            (bucket empty, or every retry lost a race)

        Raises:
            StoreUnavailableError: Redis failed or a cycle timed out. The
                stored record is left unchanged.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                outcome, old, now = await asyncio.wait_for(
                    self._run_cycle(key), timeout=self.timeout
                )
            except WatchError as e:
                if _is_dropped_connection(e):
                    logger.error(
                        f"Redis connection lost during bucket transaction: {e}",
                        extra=get_log_context(bucket_key=key, outcome="store_error", attempts=attempt),
                    )
                    raise StoreUnavailableError(cause="ConnectionError") from e
                logger.debug(
                    f"Bucket transaction conflict (attempt {attempt}/{self.max_retries})",
                    extra=get_log_context(bucket_key=key, attempts=attempt),
                )
                continue
            except asyncio.TimeoutError as e:
                logger.warning(
                    f"Bucket transaction timed out after {self.timeout}s",
                    extra=get_log_context(bucket_key=key, outcome="store_error", attempts=attempt),
                )
                raise StoreUnavailableError(cause="timeout") from e
            except RedisError as e:
                logger.error(
                    f"Redis error during bucket transaction: {e}",
                    extra=get_log_context(bucket_key=key, outcome="store_error", attempts=attempt),
                )
                raise StoreUnavailableError(cause=type(e).__name__) from e

            if outcome.new_state is not None:
                return AttemptResult(
                    decision=Decision.ADMITTED,
                    limit=self.max_tokens,
                    remaining=outcome.new_state.tokens,
                    state=outcome.new_state,
                    attempts=attempt,
                )

            return AttemptResult(
                decision=Decision.DENIED,
                limit=self.max_tokens,
                remaining=max(0, outcome.available),
                reason=DenialReason.EXHAUSTED,
                attempts=attempt,
                retry_after=seconds_until_next_token(old, now, self.refill_rate_per_hour),
            )

        logger.warning(
            f"Bucket contention: {self.max_retries} transaction attempts lost, denying",
            extra=get_log_context(
                bucket_key=key,
                outcome=DenialReason.CONTENTION.value,
                attempts=self.max_retries,
            ),
        )
        return AttemptResult(
            decision=Decision.DENIED,
            limit=self.max_tokens,
            remaining=0,
            reason=DenialReason.CONTENTION,
            attempts=self.max_retries,
            retry_after=1,
        )

    async def _run_cycle(
        self, key: str
    ) -> Tuple[RefillOutcome, Optional[BucketState], datetime]:
        """One WATCH / GET / compute / MULTI-SET-EXEC pass.

        Raises WatchError when another writer committed to ``key`` first.
        """
        async with self._redis.pipeline(transaction=True) as pipe:
            await pipe.watch(key)
            # Immediate mode while watching: GET runs now, not at EXEC
            raw = await pipe.get(key)
            old = self._load(key, raw)
            now = self._clock()
            outcome = refill(old, now, self.max_tokens, self.refill_rate_per_hour)

            if outcome.new_state is None:
                await pipe.unwatch()
                return outcome, old, now

            pipe.multi()
            pipe.set(key, codec.encode(outcome.new_state), ex=self.ttl_seconds)
            await pipe.execute()
            return outcome, old, now

    def _load(self, key: str, raw: Optional[bytes]) -> Optional[BucketState]:
        """Decode a stored record; corrupt records count as absent."""
        if raw is None:
            return None
        try:
            return codec.decode(raw)
        except CorruptStateError as e:
            logger.warning(
                f"Corrupt bucket record replaced with a full bucket: {e.detail}",
                extra=get_log_context(bucket_key=key, outcome="corrupt_state"),
            )
            return None

    async def get_state(self, key: str) -> Optional[BucketState]:
        """Read the stored bucket without consuming; None if absent or corrupt."""
        try:
            raw = await asyncio.wait_for(self._redis.get(key), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(cause="timeout") from e
        except RedisError as e:
            raise StoreUnavailableError(cause=type(e).__name__) from e
        return self._load(key, raw)
